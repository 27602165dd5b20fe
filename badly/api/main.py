"""
Badly API Server

FastAPI server for scheduling badminton sessions among friends, with push
notifications and session reminders.
"""

from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from badly.api.routes import router, limiter as routes_limiter
from badly.api.routes.health import APP_VERSION
from badly.database.db import get_repository
from badly.services.notification_queue import get_notification_queue
from badly.services.push_service import is_push_configured
from badly.services.reminder_service import get_reminder_scheduler

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
    logger.info(f"Starting up Badly API {APP_VERSION}...")

    repository = get_repository()
    logger.info(f"✓ Data directory: {repository.data_dir.resolve()}")

    if is_push_configured():
        logger.info("✓ Push notifications enabled")
    else:
        logger.warning("VAPID keys not configured, push notifications disabled")

    # Start notification worker (must run before anything enqueues)
    try:
        queue = get_notification_queue()
        queue.start_background_worker()
        logger.info("✓ Notification worker started")
    except Exception as e:
        logger.error(f"Failed to start notification worker: {e}", exc_info=True)

    # Start session reminder scheduler
    try:
        scheduler = get_reminder_scheduler()
        scheduler.start()
        logger.info("✓ Reminder scheduler started")
    except Exception as e:
        logger.error(f"Failed to start reminder scheduler: {e}", exc_info=True)

    yield  # App is running

    # Shutdown
    logger.info("Shutting down Badly API...")

    try:
        scheduler = get_reminder_scheduler()
        scheduler.stop()
        logger.info("✓ Reminder scheduler stopped")
    except Exception as e:
        logger.error(f"Error stopping reminder scheduler: {e}", exc_info=True)

    try:
        queue = get_notification_queue()
        queue.stop_background_worker()
        logger.info("✓ Notification worker stopped")
    except Exception as e:
        logger.error(f"Error stopping notification worker: {e}", exc_info=True)


app = FastAPI(
    title="Badly API",
    description="API for organizing badminton sessions among friends",
    version=APP_VERSION,
    lifespan=lifespan,
)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware, origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "3000")))
