"""
Session lifecycle rules.

Pure functions: each takes a freshly read session list plus a request and
returns a LifecycleResult (updated list, affected session, side-effect events)
or raises a domain error before anything is changed. Persisting the result and
sending the notifications is the caller's job (see session_service).

Capacity counts the organizer: a session is full when
``len(participants) + 1 >= capacity``.
"""

import enum
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional, Tuple

from badly.database.models import Session, SessionMessage
from badly.models.schemas import SessionPayload
from badly.services.exceptions import (
    PermissionDeniedError,
    SessionConflictError,
    SessionNotFoundError,
    SessionValidationError,
)
from badly.utils.constants import (
    ALLOWED_LEVELS,
    MAX_CAPACITY,
    MAX_DURATION_MINUTES,
    MAX_MESSAGE_LENGTH,
    MAX_MESSAGES_PER_SESSION,
    MAX_PARTICIPANT_NAME_LENGTH,
    MAX_SESSIONS,
    MIN_CAPACITY,
    PAST_TOLERANCE_MINUTES,
)
from badly.utils.datetime_utils import parse_datetime, to_iso_string


class EventKind(str, enum.Enum):
    """Notification-worthy side effects of a lifecycle transition."""

    NEW_SESSION = "new_session"
    SPOT_AVAILABLE = "spot_available"
    PARTICIPANT_JOINED = "participant_joined"
    PARTICIPANT_LEFT = "participant_left"
    CHAT_MESSAGE = "chat_message"
    REMINDER = "reminder"


@dataclass
class SessionEvent:
    kind: EventKind
    session: Session
    actor: Optional[str] = None
    message: Optional[SessionMessage] = None


@dataclass
class LifecycleResult:
    sessions: List[Session]
    session: Optional[Session] = None
    events: List[SessionEvent] = field(default_factory=list)
    message: Optional[SessionMessage] = None


@dataclass
class SessionFields:
    """Validated and normalized create/edit fields."""

    datetime: str
    duration_minutes: Any
    club: str
    level: str
    capacity: int
    price_per_participant: Any


def _to_number(value: Any) -> Optional[float]:
    """Coerce a JSON value to a finite number, or None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def _compact(number: float):
    """Store whole numbers as ints so they serialize as 90, not 90.0."""
    return int(number) if number.is_integer() else number


def _copy_sessions(sessions: Iterable[Session]) -> List[Session]:
    return [session.model_copy(deep=True) for session in sessions]


def validate_session_fields(
    payload: SessionPayload, clubs: List[str], now: datetime
) -> SessionFields:
    """
    Check the create/edit fields in order and normalize them.

    Args:
        payload: Raw request fields
        clubs: Reference club list (empty means any non-empty club is accepted)
        now: Current instant

    Returns:
        SessionFields with the datetime normalized to a stored ISO string and
        the price rounded to 2 decimals

    Raises:
        SessionValidationError: On the first rule that fails
    """
    start = parse_datetime(payload.datetime)
    if start is None:
        raise SessionValidationError("Invalid date/time")
    if start < now - timedelta(minutes=PAST_TOLERANCE_MINUTES):
        raise SessionValidationError("The session must be in the future")

    duration = _to_number(payload.duration_minutes)
    if duration is None or duration <= 0 or duration > MAX_DURATION_MINUTES:
        raise SessionValidationError("Invalid duration")

    club = payload.club.strip() if isinstance(payload.club, str) else ""
    if not club:
        raise SessionValidationError("Invalid club")
    if clubs and club not in clubs:
        raise SessionValidationError("Unknown club")

    level = payload.level.strip() if isinstance(payload.level, str) else ""
    if level not in ALLOWED_LEVELS:
        raise SessionValidationError("Invalid level")

    capacity = _to_number(payload.capacity)
    if (
        capacity is None
        or not capacity.is_integer()
        or capacity < MIN_CAPACITY
        or capacity > MAX_CAPACITY
    ):
        raise SessionValidationError("Invalid capacity")

    price = _to_number(payload.price_per_participant)
    if price is None or price < 0:
        raise SessionValidationError("Invalid price")
    # Half-up rounding to cents
    rounded_price = math.floor(price * 100 + 0.5) / 100

    return SessionFields(
        datetime=to_iso_string(start),
        duration_minutes=_compact(duration),
        club=club,
        level=level,
        capacity=int(capacity),
        price_per_participant=_compact(rounded_price),
    )


def find_session(sessions: List[Session], session_id: str) -> Session:
    """Return the session with ``session_id`` or raise SessionNotFoundError."""
    for session in sessions:
        if session.id == session_id:
            return session
    raise SessionNotFoundError("Session not found")


def _check_slot_free(
    sessions: List[Session], club: str, datetime_value: str, exclude_id: Optional[str] = None
) -> None:
    for other in sessions:
        if other.id == exclude_id:
            continue
        if other.club == club and other.datetime == datetime_value:
            raise SessionConflictError("A session already exists at this club and time")


def _check_not_started(session: Session, now: datetime) -> None:
    if session.has_started(now):
        raise SessionConflictError("The session has already started")


def create_session(
    sessions: List[Session],
    payload: SessionPayload,
    organizer: str,
    clubs: List[str],
    now: datetime,
) -> LifecycleResult:
    """Validate and append a new session organized by ``organizer``."""
    fields = validate_session_fields(payload, clubs, now)
    _check_slot_free(sessions, fields.club, fields.datetime)
    if len(sessions) >= MAX_SESSIONS:
        raise SessionConflictError(f"Session limit reached ({MAX_SESSIONS} maximum)")

    session = Session(
        id=str(uuid.uuid4()),
        datetime=fields.datetime,
        duration_minutes=fields.duration_minutes,
        club=fields.club,
        level=fields.level,
        capacity=fields.capacity,
        price_per_participant=fields.price_per_participant,
        organizer=organizer,
        participants=[],
        followers=[],
        messages=[],
        created_at=to_iso_string(now),
        reminder_sent=False,
    )
    updated = _copy_sessions(sessions) + [session]
    return LifecycleResult(
        sessions=updated,
        session=session,
        events=[SessionEvent(EventKind.NEW_SESSION, session, actor=organizer)],
    )


def edit_session(
    sessions: List[Session],
    session_id: str,
    payload: SessionPayload,
    actor: str,
    clubs: List[str],
    now: datetime,
) -> LifecycleResult:
    """
    Replace the editable fields of a session (organizer only, before start).

    A datetime change re-arms the reminder.
    """
    updated = _copy_sessions(sessions)
    session = find_session(updated, session_id)
    if session.organizer != actor:
        raise PermissionDeniedError("Only the organizer can edit the session")
    _check_not_started(session, now)

    fields = validate_session_fields(payload, clubs, now)
    _check_slot_free(updated, fields.club, fields.datetime, exclude_id=session.id)
    if fields.capacity < session.occupied_count:
        raise SessionConflictError(
            f"Capacity cannot be lower than the current number of participants "
            f"({session.occupied_count})"
        )

    if fields.datetime != session.datetime:
        session.reminder_sent = False
    session.datetime = fields.datetime
    session.duration_minutes = fields.duration_minutes
    session.club = fields.club
    session.level = fields.level
    session.capacity = fields.capacity
    session.price_per_participant = fields.price_per_participant

    return LifecycleResult(sessions=updated, session=session)


def delete_session(
    sessions: List[Session],
    session_id: str,
    actor: str,
    super_user: Optional[str] = None,
) -> LifecycleResult:
    """Remove a session whatever its temporal state (organizer or super-user)."""
    session = find_session(sessions, session_id)
    is_super_user = bool(super_user) and actor.lower() == super_user.lower()
    if session.organizer != actor and not is_super_user:
        raise PermissionDeniedError("Only the organizer can delete the session")

    remaining = [s for s in _copy_sessions(sessions) if s.id != session_id]
    return LifecycleResult(sessions=remaining, session=session)


def join_session(
    sessions: List[Session], session_id: str, actor: str, now: datetime
) -> LifecycleResult:
    updated = _copy_sessions(sessions)
    session = find_session(updated, session_id)
    _check_not_started(session, now)
    if session.organizer == actor:
        raise SessionConflictError("The organizer is already registered")
    if actor in session.participants:
        raise SessionConflictError("Already registered")
    if session.is_full:
        raise SessionConflictError("Session complete")

    session.participants.append(actor)
    return LifecycleResult(
        sessions=updated,
        session=session,
        events=[SessionEvent(EventKind.PARTICIPANT_JOINED, session, actor=actor)],
    )


def leave_session(
    sessions: List[Session], session_id: str, actor: str, now: datetime
) -> LifecycleResult:
    """
    Remove ``actor`` from the participants.

    Emits PARTICIPANT_LEFT, plus SPOT_AVAILABLE when the session was full
    before the departure.
    """
    updated = _copy_sessions(sessions)
    session = find_session(updated, session_id)
    if session.organizer == actor:
        raise SessionConflictError("The organizer cannot leave the session")
    if actor not in session.participants:
        raise SessionConflictError("Not registered")
    _check_not_started(session, now)

    was_full = session.is_full
    session.participants = [name for name in session.participants if name != actor]

    events = [SessionEvent(EventKind.PARTICIPANT_LEFT, session, actor=actor)]
    if was_full:
        events.append(SessionEvent(EventKind.SPOT_AVAILABLE, session))
    return LifecycleResult(sessions=updated, session=session, events=events)


def update_participants(
    sessions: List[Session],
    session_id: str,
    actor: str,
    names: List[Any],
    now: datetime,
) -> LifecycleResult:
    """Bulk replace the participant list (organizer only, before start)."""
    updated = _copy_sessions(sessions)
    session = find_session(updated, session_id)
    if session.organizer != actor:
        raise PermissionDeniedError("Only the organizer can change the participants")
    _check_not_started(session, now)

    normalized = []
    for name in names:
        if not isinstance(name, str):
            raise SessionValidationError("Invalid participant name")
        trimmed = name.strip()
        if not trimmed or len(trimmed) > MAX_PARTICIPANT_NAME_LENGTH:
            raise SessionValidationError(
                f"Invalid participant name (1-{MAX_PARTICIPANT_NAME_LENGTH} characters)"
            )
        if trimmed.lower() == session.organizer.lower():
            raise SessionValidationError("The organizer cannot be added as a participant")
        normalized.append(trimmed)

    if len(normalized) + 1 > session.capacity:
        raise SessionConflictError("Too many participants for the session capacity")

    was_full = session.is_full
    session.participants = normalized

    events = []
    if was_full and not session.is_full:
        events.append(SessionEvent(EventKind.SPOT_AVAILABLE, session))
    return LifecycleResult(sessions=updated, session=session, events=events)


def follow_session(sessions: List[Session], session_id: str, actor: str) -> LifecycleResult:
    updated = _copy_sessions(sessions)
    session = find_session(updated, session_id)
    if session.organizer == actor:
        raise SessionConflictError("The organizer cannot follow their own session")
    if actor in session.followers:
        raise SessionConflictError("You already follow this session")

    session.followers.append(actor)
    return LifecycleResult(sessions=updated, session=session)


def unfollow_session(sessions: List[Session], session_id: str, actor: str) -> LifecycleResult:
    updated = _copy_sessions(sessions)
    session = find_session(updated, session_id)
    if actor not in session.followers:
        raise SessionConflictError("You do not follow this session")

    session.followers = [name for name in session.followers if name != actor]
    return LifecycleResult(sessions=updated, session=session)


def send_message(
    sessions: List[Session], session_id: str, actor: str, text: Any, now: datetime
) -> LifecycleResult:
    """
    Append a chat message from a member of the session.

    Only the last MAX_MESSAGES_PER_SESSION messages are kept.
    """
    updated = _copy_sessions(sessions)
    session = find_session(updated, session_id)
    _check_not_started(session, now)

    is_member = (
        session.organizer == actor
        or actor in session.participants
        or actor in session.followers
    )
    if not is_member:
        raise PermissionDeniedError(
            "You must be a participant or follower to send a message"
        )

    if not isinstance(text, str) or not text:
        raise SessionValidationError("Missing message")
    trimmed = text.strip()
    if not trimmed:
        raise SessionValidationError("The message cannot be empty")
    if len(trimmed) > MAX_MESSAGE_LENGTH:
        raise SessionValidationError(
            f"The message cannot exceed {MAX_MESSAGE_LENGTH} characters"
        )

    message = SessionMessage(
        id=str(uuid.uuid4()),
        sender=actor,
        text=trimmed,
        timestamp=to_iso_string(now),
    )
    session.messages.append(message)
    if len(session.messages) > MAX_MESSAGES_PER_SESSION:
        session.messages = session.messages[-MAX_MESSAGES_PER_SESSION:]

    return LifecycleResult(
        sessions=updated,
        session=session,
        events=[SessionEvent(EventKind.CHAT_MESSAGE, session, actor=actor, message=message)],
        message=message,
    )


def purge_expired(sessions: List[Session], now: datetime) -> Tuple[List[Session], int]:
    """
    Drop expired sessions.

    Returns:
        (remaining sessions, number removed)
    """
    remaining = [session for session in sessions if not session.has_expired(now)]
    return remaining, len(sessions) - len(remaining)


def due_for_reminder(session: Session, now: datetime, lead: timedelta) -> bool:
    """True when the session starts within ``lead`` and was not reminded yet."""
    if session.reminder_sent:
        return False
    start = session.start_time()
    if start is None:
        return False
    time_to_start = start - now
    return timedelta(0) < time_to_start <= lead
