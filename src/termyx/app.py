"""
Termyx gating API.

Run:
  uvicorn termyx.app:create_app --factory --reload
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from .api.middleware import RateLimitMiddleware
from .api.router import router
from .cache.base import AsyncCacheBackend
from .config import Settings, settings as default_settings
from .db.base import BaseDBManager
from .db.factory import create_db_manager
from .db.memory import InMemoryDBManager
from .db.seeds import seed_blocked_email_domains
from .services.rate_limiter import RateLimiter
from .services.registry import Services

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


async def _prepare_storage(services: Services) -> None:
    db = services.db
    if isinstance(db, InMemoryDBManager) and services.settings.SEED_BLOCKED_DOMAINS:
        await seed_blocked_email_domains(db)
        return
    ensure_indexes = getattr(db, "ensure_indexes", None)
    if ensure_indexes is not None:
        await ensure_indexes()


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[BaseDBManager] = None,
    cache: Optional[AsyncCacheBackend] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    services = Services.build(
        settings=settings,
        db=db or create_db_manager(settings),
        cache=cache,
        rate_limiter=rate_limiter,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await _prepare_storage(services)
        services.rate_limiter.start_sweeper(settings.RATE_LIMIT_SWEEP_SECONDS)
        logger.info("Termyx gating API started")
        try:
            yield
        finally:
            await services.rate_limiter.stop_sweeper()

    app = FastAPI(title="Termyx gating API", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(
        RateLimitMiddleware,
        rate_limiter=services.rate_limiter,
        preset="standard",
        path_prefix="/api",
        skip_paths=("/api/health",),
    )
    app.include_router(router)
    return app

