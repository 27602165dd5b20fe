"""Authentication route handlers."""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from badly.api.auth_dependencies import clear_auth_cookie, set_auth_cookie
from badly.api.routes import limiter, to_http_exception
from badly.database.db import EntityRepository, get_repository
from badly.database.models import User
from badly.models.schemas import AuthResponse, CredentialsRequest, UserResponse
from badly.services import user_service
from badly.services.exceptions import AuthenticationError

logger = logging.getLogger(__name__)
router = APIRouter()

# Delay before answering a failed sign-in
FAILED_SIGNIN_DELAY_SECONDS = 0.25


def _auth_response(user: User) -> JSONResponse:
    body = AuthResponse(user=UserResponse(name=user.name, password_hash=user.password_hash))
    response = JSONResponse(content=body.model_dump(by_alias=True))
    set_auth_cookie(response, user)
    return response


@router.post("/signup", response_model=AuthResponse)
@limiter.limit("10/minute")
async def signup(
    request: Request,
    payload: CredentialsRequest,
    repository: EntityRepository = Depends(get_repository),
):
    """Create an account and sign it in."""
    try:
        user = user_service.signup(repository, payload.name, payload.password)
    except Exception as e:
        raise to_http_exception(e)
    return _auth_response(user)


@router.post("/signin", response_model=AuthResponse)
@limiter.limit("10/minute")
async def signin(
    request: Request,
    payload: CredentialsRequest,
    repository: EntityRepository = Depends(get_repository),
):
    """Sign in with a password, or with the password hash kept by the client."""
    try:
        user = user_service.authenticate(
            repository, payload.name, payload.password, payload.password_hash
        )
    except AuthenticationError as e:
        await asyncio.sleep(FAILED_SIGNIN_DELAY_SECONDS)
        raise HTTPException(status_code=401, detail=str(e))
    except Exception as e:
        raise to_http_exception(e)
    return _auth_response(user)


@router.post("/signout")
async def signout():
    response = JSONResponse(content={"ok": True})
    clear_auth_cookie(response)
    return response
