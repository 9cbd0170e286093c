from pydantic import BaseModel, Field


class Flag(BaseModel):
    status: int = Field(0, description="0 on success")
    errmsg: str = Field("", description="Error message when status is not 0")


class FileUploadResponse(BaseModel):
    path: str = Field(..., description="Path written inside the sandbox")
    size: int = Field(..., description="Number of bytes written")
