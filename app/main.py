"""LinkLedger FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

import aiohttp
from fastapi import FastAPI
from redis.asyncio import Redis

from app.api import (
    channels_router,
    conversions_router,
    efficiency_router,
    redirect_router,
    tracking_links_router,
)
from app.config import settings
from app.database import engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the shared outbound HTTP session and Redis client."""
    app.state.http_session = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=settings.forward_timeout_seconds * 4)
    )
    app.state.redis = Redis.from_url(settings.redis_url, decode_responses=False)
    logger.info("LinkLedger started")

    yield

    await app.state.http_session.close()
    await app.state.redis.aclose()
    await engine.dispose()
    logger.info("LinkLedger stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    app = FastAPI(
        title="LinkLedger API",
        version="0.1.0",
        description="Tracking-link attribution and conversion reconciliation",
        lifespan=lifespan,
    )

    app.include_router(tracking_links_router)
    app.include_router(redirect_router)
    app.include_router(conversions_router)
    app.include_router(efficiency_router)
    app.include_router(channels_router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
