"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tilawa.config import get_settings
from tilawa.database import close_db, get_engine, init_db
from tilawa.db import models  # noqa: F401  registers tables on Base.metadata
from tilawa.db.base import Base
from tilawa.health.router import router as health_router
from tilawa.middleware import setup_middleware
from tilawa.mistakes.router import router as mistakes_router
from tilawa.progress.router import router as progress_router
from tilawa.quiz.router import router as quiz_router
from tilawa.redis_client import close_redis, init_redis
from tilawa.rewards.router import router as rewards_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings)
    await init_redis(settings)

    if settings.auto_create_schema:
        # Development convenience; production schemas come from alembic.
        async with get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema created")

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Tilawa Rewards API",
        description="Coins, achievements, streaks and progress for the Tilawa learning app",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(progress_router)
    app.include_router(quiz_router)
    app.include_router(rewards_router)
    app.include_router(mistakes_router)

    return app


app = create_app()
