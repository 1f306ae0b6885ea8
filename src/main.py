"""Entry point for the voice receptionist media-stream service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.dependencies import get_registry, registry_created
from api.routes import router as api_router
from config.settings import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if registry_created():
        await get_registry().close_all()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Voice Receptionist",
    description="Real-time AI receptionist answering phone calls over telephony media streams.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")


def run() -> None:
    import uvicorn

    uvicorn.run("main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
