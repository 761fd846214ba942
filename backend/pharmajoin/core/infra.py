from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from pharmajoin.core.config import settings
from pharmajoin.db.session import Database

logger = structlog.get_logger(__name__)


def lifespan_for(database: Optional[Database] = None):
    """
    Build the app lifespan. The pool is created here unless one is injected,
    and only a pool created here is disposed on shutdown.
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = database is None
        db = database or Database.from_settings(settings)
        app.state.database = db
        logger.info(
            "startup_database_ready",
            dialect=db.dialect_name,
            pool_max=settings.DB_POOL_MAX,
            pool_timeout_s=settings.DB_POOL_TIMEOUT,
        )
        try:
            yield
        finally:
            if owned:
                await db.dispose()
            logger.info("shutdown_complete")

    return lifespan
