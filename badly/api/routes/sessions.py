"""Session route handlers."""

import logging

from fastapi import APIRouter, Depends

from badly.api.auth_dependencies import get_current_user
from badly.api.routes import to_http_exception
from badly.database.db import EntityRepository, get_repository
from badly.database.models import User
from badly.models.schemas import (
    EditSessionRequest,
    SessionIdRequest,
    SessionListResponse,
    SessionPayload,
    SendMessageRequest,
    UpdateParticipantsRequest,
)
from badly.services import session_service
from badly.services.session_service import format_session_for_client

logger = logging.getLogger(__name__)
router = APIRouter()


def _session_response(session) -> dict:
    return {"ok": True, "session": format_session_for_client(session)}


@router.get("/listSessions", response_model=SessionListResponse)
async def list_sessions(
    current_user: User = Depends(get_current_user),
    repository: EntityRepository = Depends(get_repository),
):
    """
    List upcoming and ongoing sessions, ordered by start time.

    Expired sessions are deleted before listing.
    """
    try:
        listing = session_service.list_sessions(repository)
    except Exception as e:
        raise to_http_exception(e)
    return {"ok": True, **listing}


@router.post("/createSession")
async def create_session(
    payload: SessionPayload,
    current_user: User = Depends(get_current_user),
    repository: EntityRepository = Depends(get_repository),
):
    try:
        session = session_service.create_session(repository, current_user.name, payload)
    except Exception as e:
        raise to_http_exception(e)
    return _session_response(session)


@router.post("/editSession")
async def edit_session(
    payload: EditSessionRequest,
    current_user: User = Depends(get_current_user),
    repository: EntityRepository = Depends(get_repository),
):
    try:
        session = session_service.edit_session(
            repository, current_user.name, payload.session_id, payload
        )
    except Exception as e:
        raise to_http_exception(e)
    return _session_response(session)


@router.post("/deleteSession")
async def delete_session(
    payload: SessionIdRequest,
    current_user: User = Depends(get_current_user),
    repository: EntityRepository = Depends(get_repository),
):
    try:
        session_service.delete_session(repository, current_user.name, payload.session_id)
    except Exception as e:
        raise to_http_exception(e)
    return {"ok": True}


@router.post("/joinSession")
async def join_session(
    payload: SessionIdRequest,
    current_user: User = Depends(get_current_user),
    repository: EntityRepository = Depends(get_repository),
):
    try:
        session = session_service.join_session(repository, current_user.name, payload.session_id)
    except Exception as e:
        raise to_http_exception(e)
    return _session_response(session)


@router.post("/leaveSession")
async def leave_session(
    payload: SessionIdRequest,
    current_user: User = Depends(get_current_user),
    repository: EntityRepository = Depends(get_repository),
):
    try:
        session = session_service.leave_session(repository, current_user.name, payload.session_id)
    except Exception as e:
        raise to_http_exception(e)
    return _session_response(session)


@router.post("/updateParticipants")
async def update_participants(
    payload: UpdateParticipantsRequest,
    current_user: User = Depends(get_current_user),
    repository: EntityRepository = Depends(get_repository),
):
    """Replace the participant list (organizer only)."""
    try:
        session = session_service.update_participants(
            repository, current_user.name, payload.session_id, payload.participants
        )
    except Exception as e:
        raise to_http_exception(e)
    return _session_response(session)


@router.post("/followSession")
async def follow_session(
    payload: SessionIdRequest,
    current_user: User = Depends(get_current_user),
    repository: EntityRepository = Depends(get_repository),
):
    try:
        session = session_service.follow_session(repository, current_user.name, payload.session_id)
    except Exception as e:
        raise to_http_exception(e)
    return _session_response(session)


@router.post("/unfollowSession")
async def unfollow_session(
    payload: SessionIdRequest,
    current_user: User = Depends(get_current_user),
    repository: EntityRepository = Depends(get_repository),
):
    try:
        session = session_service.unfollow_session(
            repository, current_user.name, payload.session_id
        )
    except Exception as e:
        raise to_http_exception(e)
    return _session_response(session)


@router.post("/sendMessage")
async def send_message(
    payload: SendMessageRequest,
    current_user: User = Depends(get_current_user),
    repository: EntityRepository = Depends(get_repository),
):
    """Post a chat message (organizer, participants and followers, before start)."""
    try:
        result = session_service.send_message(
            repository, current_user.name, payload.session_id, payload.text
        )
    except Exception as e:
        raise to_http_exception(e)
    return {
        "ok": True,
        "message": result.message.to_record(),
        "session": format_session_for_client(result.session),
    }
