from .env import LOG
from .service.sandbox import init_sandbox_service, close_sandbox_service


async def setup() -> None:
    await init_sandbox_service()
    LOG.info("liteboxd core is ready")


async def cleanup() -> None:
    await close_sandbox_service()
