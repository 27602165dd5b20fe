"""
Session service layer.

Each operation reads the session collection, applies the lifecycle rules, writes
the whole collection back and then queues the resulting notifications. The
read-modify-write runs under the sessions store lock, so concurrent operations
on sessions are serialized and no update is lost.
"""

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from badly.database.db import EntityRepository
from badly.database.models import Session
from badly.models.schemas import SessionPayload
from badly.services import session_lifecycle
from badly.services.notification_queue import NotificationQueue, get_notification_queue
from badly.services.session_lifecycle import LifecycleResult
from badly.utils.datetime_utils import utcnow

load_dotenv()

logger = logging.getLogger(__name__)

# User allowed to delete any session (empty disables it)
SUPER_USER = os.getenv("SUPER_USER", "")


def format_session_for_client(session: Session) -> Dict[str, Any]:
    """
    Convert a session to its client representation.

    ``participantCount`` includes the organizer and never exceeds the capacity.
    """
    return {
        "id": session.id,
        "datetime": session.datetime,
        "durationMinutes": session.duration_minutes,
        "club": session.club,
        "level": session.level,
        "capacity": session.capacity,
        "pricePerParticipant": session.price_per_participant,
        "organizer": session.organizer,
        "participants": list(session.participants),
        "followers": list(session.followers),
        "messages": [message.to_record() for message in session.messages],
        "createdAt": session.created_at,
        "participantCount": min(session.occupied_count, session.capacity),
    }


def _apply(
    repository: EntityRepository,
    operation,
    *args,
    queue: Optional[NotificationQueue] = None,
) -> LifecycleResult:
    """
    Run a lifecycle function against the current sessions and persist the result.

    Notifications are queued only after the write succeeded.
    """
    with repository.sessions.lock:
        sessions = repository.read_sessions()
        result = operation(sessions, *args)
        repository.write_sessions(result.sessions)

    queue = queue or get_notification_queue()
    for event in result.events:
        queue.enqueue(event)
    return result


def purge_expired_sessions(repository: EntityRepository, now: Optional[datetime] = None) -> int:
    """
    Delete expired sessions from storage.

    Returns:
        Number of sessions removed
    """
    now = now or utcnow()
    with repository.sessions.lock:
        sessions = repository.read_sessions()
        remaining, removed = session_lifecycle.purge_expired(sessions, now)
        if removed:
            repository.write_sessions(remaining)
            logger.info(f"Purged {removed} expired session(s)")
    return removed


def list_sessions(repository: EntityRepository, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Purge expired sessions, then list the remaining ones by start time.

    Returns:
        Dict with ``sessions`` (client format), ``clubs`` and ``validUsernames``
    """
    purge_expired_sessions(repository, now)

    def start_key(session: Session):
        start = session.start_time()
        return start.timestamp() if start else float("inf")

    sessions = sorted(repository.read_sessions(), key=start_key)
    return {
        "sessions": [format_session_for_client(session) for session in sessions],
        "clubs": repository.read_clubs(),
        "validUsernames": [user.name for user in repository.read_users()],
    }


def create_session(
    repository: EntityRepository,
    organizer: str,
    payload: SessionPayload,
    now: Optional[datetime] = None,
    queue: Optional[NotificationQueue] = None,
) -> Session:
    """
    Create a session organized by ``organizer``.

    Args:
        repository: Entity repository
        organizer: Name of the authenticated user
        payload: Raw create fields
        now: Current instant (defaults to utcnow())
        queue: Notification queue (defaults to the global one)

    Returns:
        The created session

    Raises:
        SessionValidationError: If a field is invalid
        SessionConflictError: If the (club, datetime) slot is taken or the
            session limit is reached
    """
    clubs = repository.read_clubs()
    result = _apply(
        repository,
        session_lifecycle.create_session,
        payload,
        organizer,
        clubs,
        now or utcnow(),
        queue=queue,
    )
    logger.info(f"Session {result.session.id} created by {organizer}")
    return result.session


def edit_session(
    repository: EntityRepository,
    actor: str,
    session_id: str,
    payload: SessionPayload,
    now: Optional[datetime] = None,
    queue: Optional[NotificationQueue] = None,
) -> Session:
    """Edit a session's fields (organizer only, before start)."""
    clubs = repository.read_clubs()
    result = _apply(
        repository,
        session_lifecycle.edit_session,
        session_id,
        payload,
        actor,
        clubs,
        now or utcnow(),
        queue=queue,
    )
    return result.session


def delete_session(
    repository: EntityRepository,
    actor: str,
    session_id: str,
    queue: Optional[NotificationQueue] = None,
) -> None:
    """Delete a session (organizer or super-user)."""
    _apply(
        repository,
        session_lifecycle.delete_session,
        session_id,
        actor,
        SUPER_USER or None,
        queue=queue,
    )
    logger.info(f"Session {session_id} deleted by {actor}")


def join_session(
    repository: EntityRepository,
    actor: str,
    session_id: str,
    now: Optional[datetime] = None,
    queue: Optional[NotificationQueue] = None,
) -> Session:
    result = _apply(
        repository, session_lifecycle.join_session, session_id, actor, now or utcnow(), queue=queue
    )
    return result.session


def leave_session(
    repository: EntityRepository,
    actor: str,
    session_id: str,
    now: Optional[datetime] = None,
    queue: Optional[NotificationQueue] = None,
) -> Session:
    result = _apply(
        repository, session_lifecycle.leave_session, session_id, actor, now or utcnow(), queue=queue
    )
    return result.session


def update_participants(
    repository: EntityRepository,
    actor: str,
    session_id: str,
    participants: List[Any],
    now: Optional[datetime] = None,
    queue: Optional[NotificationQueue] = None,
) -> Session:
    result = _apply(
        repository,
        session_lifecycle.update_participants,
        session_id,
        actor,
        participants,
        now or utcnow(),
        queue=queue,
    )
    return result.session


def follow_session(
    repository: EntityRepository,
    actor: str,
    session_id: str,
    queue: Optional[NotificationQueue] = None,
) -> Session:
    result = _apply(repository, session_lifecycle.follow_session, session_id, actor, queue=queue)
    return result.session


def unfollow_session(
    repository: EntityRepository,
    actor: str,
    session_id: str,
    queue: Optional[NotificationQueue] = None,
) -> Session:
    result = _apply(repository, session_lifecycle.unfollow_session, session_id, actor, queue=queue)
    return result.session


def send_message(
    repository: EntityRepository,
    actor: str,
    session_id: str,
    text: Any,
    now: Optional[datetime] = None,
    queue: Optional[NotificationQueue] = None,
) -> LifecycleResult:
    """
    Post a chat message on a session.

    Returns:
        LifecycleResult with ``message`` and the updated ``session``
    """
    return _apply(
        repository,
        session_lifecycle.send_message,
        session_id,
        actor,
        text,
        now or utcnow(),
        queue=queue,
    )
