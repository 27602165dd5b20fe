"""Version and health check route handlers."""

import logging
import os

from dotenv import load_dotenv
from fastapi import APIRouter

from badly.models.schemas import HealthResponse
from badly.services.push_service import is_push_configured
from badly.utils.constants import (
    REMINDER_CHECK_INTERVAL_SECONDS,
    REMINDER_MINUTES_BEFORE_START,
)

load_dotenv()

logger = logging.getLogger(__name__)
router = APIRouter()

APP_VERSION = os.getenv("APP_VERSION", "1.3.5")


@router.get("/version")
async def get_version():
    return {"ok": True, "version": APP_VERSION}


@router.get("/api/health", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Service status with push and reminder settings
    """
    return HealthResponse(
        status="healthy",
        version=APP_VERSION,
        push_enabled=is_push_configured(),
        reminder_minutes_before_start=REMINDER_MINUTES_BEFORE_START,
        reminder_check_interval_seconds=REMINDER_CHECK_INTERVAL_SECONDS,
    )
