"""
Authentication dependencies for FastAPI routes.

The client keeps ``{"name", "passwordHash"}`` in the URL-encoded ``badlyAuth``
cookie; every authenticated request re-checks it against users.json.
"""

import json
import logging
from typing import Optional
from urllib.parse import quote, unquote

from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import Response

from badly.database.db import EntityRepository, get_repository
from badly.database.models import User
from badly.services import user_service

logger = logging.getLogger(__name__)

COOKIE_NAME = "badlyAuth"
COOKIE_MAX_AGE_SECONDS = 30 * 24 * 60 * 60


def read_auth_cookie(request: Request) -> Optional[dict]:
    """Decode the auth cookie, or None if it is missing or malformed."""
    raw = request.cookies.get(COOKIE_NAME)
    if not raw:
        return None
    try:
        payload = json.loads(unquote(raw))
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def set_auth_cookie(response: Response, user: User) -> None:
    value = json.dumps({"name": user.name, "passwordHash": user.password_hash})
    response.set_cookie(
        COOKIE_NAME,
        quote(value, safe=""),
        max_age=COOKIE_MAX_AGE_SECONDS,
        path="/",
        samesite="lax",
    )


def clear_auth_cookie(response: Response) -> None:
    response.delete_cookie(COOKIE_NAME, path="/", samesite="lax")


async def get_current_user(
    request: Request,
    repository: EntityRepository = Depends(get_repository),
) -> User:
    """
    Dependency to get the current authenticated user from the auth cookie.

    Raises:
        HTTPException: 401 if the cookie is missing or does not match a user
    """
    user = user_service.authenticate_cookie(repository, read_auth_cookie(request))
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return user
