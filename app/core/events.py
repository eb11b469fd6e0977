"""
Application lifecycle events
Handles startup and shutdown tasks
"""

from fastapi import FastAPI
import logging
from contextlib import asynccontextmanager

from .database import init_db, close_db
from .logging import setup_logging
from .config import settings

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager
    Handles startup and shutdown events
    """
    # Startup
    try:
        setup_logging()
        logger.info(f"Starting {settings.APP_NAME}...")

        if settings.ENVIRONMENT != "test":
            await init_db()
            logger.info("Database initialized")

        logger.info(
            f"Rate limiting {'enabled' if settings.RATE_LIMIT_ENABLED else 'disabled'} "
            f"({settings.RATE_LIMIT_STORAGE} storage)"
        )
        logger.info(f"{settings.APP_NAME} started successfully")

        yield

    finally:
        # Shutdown
        logger.info(f"Shutting down {settings.APP_NAME}...")

        await app.state.rate_limiters.close()
        logger.info("Rate limiter storage closed")

        await close_db()

        logger.info(f"{settings.APP_NAME} shutdown complete")
