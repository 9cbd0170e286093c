from .sandbox import router as sandbox_router

__all__ = [
    "sandbox_router",
]
