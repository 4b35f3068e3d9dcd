"""FastAPI app entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from timemachine.core.config import settings
from timemachine.core.container import build_container
from timemachine.db.init_db import init_models
from timemachine.db.session import SessionLocal, engine
from timemachine.routers import credentials, subscriptions, videos

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logging.basicConfig(level=settings.log_level.upper())
    await init_models(engine)
    app.state.container = await build_container(settings, SessionLocal)
    logger.info("Time machine ready with %s API keys", len(app.state.container.pool))
    try:
        yield
    finally:
        await app.state.container.aclose()


def create_app() -> FastAPI:
    """Build FastAPI application."""

    app = FastAPI(title="YouTube Time Machine", version="0.1.0", lifespan=lifespan)
    app.include_router(credentials.router)
    app.include_router(subscriptions.router)
    app.include_router(videos.router)

    @app.get("/healthz", tags=["health"])
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
