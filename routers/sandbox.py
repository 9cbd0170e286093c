from fastapi import APIRouter, Body, Path, Query, Request
from fastapi.exceptions import HTTPException
from fastapi.responses import Response
from liteboxd_core.env import LOG
from liteboxd_core.schema.error import (
    CreationError,
    NotFoundInArchive,
    SandboxAlreadyExists,
    SandboxError,
    SandboxNotFound,
    SandboxTimeout,
    TransferError,
    TransportError,
)
from liteboxd_core.schema.response import Flag, FileUploadResponse
from liteboxd_core.schema.sandbox import (
    CreateSandboxRequest,
    ExecRequest,
    ExecResult,
    LogsResponse,
    Sandbox,
    SandboxListResponse,
)
from liteboxd_core.service.sandbox import SANDBOX_SERVICE

router = APIRouter(prefix="/api/v1/sandboxes", tags=["sandbox"])

_ERROR_STATUS: list[tuple[type[SandboxError], int]] = [
    (SandboxNotFound, 404),
    (NotFoundInArchive, 404),
    (SandboxAlreadyExists, 409),
    (CreationError, 400),
    (TransferError, 500),
    (SandboxTimeout, 504),
    (TransportError, 502),
]


def to_http_exception(e: SandboxError) -> HTTPException:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(e, error_type):
            return HTTPException(status_code=status_code, detail=str(e))
    LOG.error(f"Unmapped sandbox error: {e!r}")
    return HTTPException(status_code=500, detail=str(e))


@router.post("", status_code=201)
async def create_sandbox(
    request: CreateSandboxRequest = Body(..., description="Sandbox creation request"),
) -> Sandbox:
    """
    Create a sandbox pod and return it (usually still pending).
    """
    try:
        return await SANDBOX_SERVICE.use_service().create(request)
    except SandboxError as e:
        raise to_http_exception(e) from e


@router.get("")
async def list_sandboxes() -> SandboxListResponse:
    """
    List all live sandboxes.
    """
    try:
        items = await SANDBOX_SERVICE.use_service().list()
    except SandboxError as e:
        raise to_http_exception(e) from e
    return SandboxListResponse(items=items)


@router.get("/{sandbox_id}")
async def get_sandbox(
    sandbox_id: str = Path(..., description="Sandbox ID to query"),
) -> Sandbox:
    try:
        return await SANDBOX_SERVICE.use_service().get(sandbox_id)
    except SandboxError as e:
        raise to_http_exception(e) from e


@router.delete("/{sandbox_id}")
async def delete_sandbox(
    sandbox_id: str = Path(..., description="Sandbox ID to delete"),
) -> Flag:
    try:
        await SANDBOX_SERVICE.use_service().delete(sandbox_id)
    except SandboxError as e:
        raise to_http_exception(e) from e
    return Flag(status=0, errmsg="")


@router.post("/{sandbox_id}/exec")
async def exec_sandbox_command(
    sandbox_id: str = Path(..., description="Sandbox ID to execute command in"),
    request: ExecRequest = Body(..., description="Command execution request"),
) -> ExecResult:
    """
    Execute a command in the sandbox. Non-zero exit codes are not HTTP errors.
    """
    try:
        return await SANDBOX_SERVICE.use_service().exec(
            sandbox_id, request.command, request.timeout
        )
    except SandboxError as e:
        raise to_http_exception(e) from e


@router.put("/{sandbox_id}/files")
async def upload_sandbox_file(
    request: Request,
    sandbox_id: str = Path(..., description="Sandbox ID to upload to"),
    path: str = Query(..., min_length=1, description="Destination path in the sandbox"),
) -> FileUploadResponse:
    """
    Upload the raw request body as a file in the sandbox.
    """
    content = await request.body()
    try:
        await SANDBOX_SERVICE.use_service().upload_file(sandbox_id, path, content)
    except SandboxError as e:
        raise to_http_exception(e) from e
    return FileUploadResponse(path=path, size=len(content))


@router.get("/{sandbox_id}/files")
async def download_sandbox_file(
    sandbox_id: str = Path(..., description="Sandbox ID to download from"),
    path: str = Query(..., min_length=1, description="File path in the sandbox"),
) -> Response:
    try:
        content = await SANDBOX_SERVICE.use_service().download_file(sandbox_id, path)
    except SandboxError as e:
        raise to_http_exception(e) from e
    return Response(content=content, media_type="application/octet-stream")


@router.get("/{sandbox_id}/logs")
async def get_sandbox_logs(
    sandbox_id: str = Path(..., description="Sandbox ID"),
    tail_lines: int = Query(0, ge=0, description="Last N lines only, 0 for all"),
) -> LogsResponse:
    """
    Container logs and pod events. Either part is empty if it cannot be fetched.
    """
    return await SANDBOX_SERVICE.use_service().get_logs(sandbox_id, tail_lines)
