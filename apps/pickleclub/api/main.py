"""
Pickleclub Open Play API Server

FastAPI server that runs the open play capacity enforcement worker and
exposes administrative endpoints to trigger evaluations by hand.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
import logging
import os
import uvicorn

from pickleclub.api.routes import router
from pickleclub.database import db
from pickleclub.services.open_play_engine import OpenPlayEngine, TransactionScope
from pickleclub.services.open_play_scheduler import OpenPlayEnforcementScheduler
from pickleclub.utils import constants

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    # Startup
    logger.info("Starting up Pickleclub Open Play API...")

    # Initialize database (create tables if they don't exist)
    # This is a fallback for tables that might not be in migrations yet
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        # Don't raise - allow app to start even if initialization fails

    engine = OpenPlayEngine(
        transaction_scope=TransactionScope(constants.OPEN_PLAY_TRANSACTION_SCOPE)
    )
    app.state.open_play_engine = engine

    scheduler = OpenPlayEnforcementScheduler(engine)
    app.state.open_play_scheduler = scheduler

    # Start open play enforcement worker (cancel / rescale sessions near cutoff)
    if constants.OPEN_PLAY_SCHEDULER_ENABLED:
        try:
            scheduler.start()
            logger.info("✓ Open play enforcement worker started")
        except Exception as e:
            logger.error(f"Failed to start open play enforcement worker: {e}", exc_info=True)
    else:
        logger.info("Open play enforcement worker disabled by configuration")

    yield  # App is running

    # Shutdown
    logger.info("Shutting down Pickleclub Open Play API...")

    try:
        scheduler.stop()
        logger.info("✓ Open play enforcement worker stopped")
    except Exception as e:
        logger.error(f"Error stopping open play enforcement worker: {e}", exc_info=True)


app = FastAPI(
    title="Pickleclub Open Play API",
    description="Open play capacity enforcement for multi-facility pickleball clubs",
    version="1.0.0",
    lifespan=lifespan,
)

# Include API routes
app.include_router(router)


@app.get("/api/health")
async def health():
    """Liveness check, with the enforcement worker state."""
    scheduler = getattr(app.state, "open_play_scheduler", None)
    return {
        "status": "ok",
        "open_play_scheduler_running": bool(scheduler and scheduler.is_running),
    }


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
