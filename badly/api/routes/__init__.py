"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, error mapping) lives here; every sub-router
imports what it needs from this package.
"""

import logging
import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from badly.database.store import StorageCorruptionError
from badly.services.exceptions import (
    AuthenticationError,
    PermissionDeniedError,
    SessionNotFoundError,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
if IS_TEST_ENV:
    limiter = Limiter(key_func=get_remote_address)

    def no_op_limit(*args, **kwargs):
        """No-op decorator for test mode - doesn't apply any rate limiting."""
        def decorator(func):
            return func
        return decorator

    limiter.limit = lambda *args, **kwargs: no_op_limit()
else:
    limiter = Limiter(key_func=get_remote_address)

# ---------------------------------------------------------------------------
# Shared error mapping
# ---------------------------------------------------------------------------


def to_http_exception(error: Exception) -> HTTPException:
    """
    Map a domain or storage error to the HTTPException returned to the client.

    Validation and conflict errors (any other ValueError) are 400s.
    """
    if isinstance(error, AuthenticationError):
        return HTTPException(status_code=401, detail=str(error))
    if isinstance(error, PermissionDeniedError):
        return HTTPException(status_code=403, detail=str(error))
    if isinstance(error, SessionNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ValueError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, StorageCorruptionError):
        logger.error(f"Storage corruption: {error}")
        return HTTPException(status_code=500, detail="Storage unavailable")
    logger.error(f"Unexpected error: {error}", exc_info=True)
    return HTTPException(status_code=500, detail="Server error")


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from badly.api.routes.auth import router as auth_router  # noqa: E402
from badly.api.routes.sessions import router as sessions_router  # noqa: E402
from badly.api.routes.push import router as push_router  # noqa: E402
from badly.api.routes.health import router as health_router  # noqa: E402

router = APIRouter()
router.include_router(auth_router)
router.include_router(sessions_router)
router.include_router(push_router)
router.include_router(health_router)
