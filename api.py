from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from liteboxd_core.di import setup, cleanup
from liteboxd_core.env import DEFAULT_CORE_CONFIG
from routers import sandbox_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: kube config, namespace, TTL reaper
    await setup()
    yield
    # Shutdown
    await cleanup()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in DEFAULT_CORE_CONFIG.cors_allow_origins.split(",")
        if origin.strip()
    ],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Origin", "Content-Type", "Accept"],
    expose_headers=["Content-Length"],
    max_age=12 * 60 * 60,
)

app.include_router(sandbox_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
