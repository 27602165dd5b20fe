"""
Pydantic models for API request/response validation.

Request bodies use the camelCase keys the web client sends. Session fields are
loosely typed on purpose: the session lifecycle checks them in a fixed order and
reports one specific message per rule.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Authentication schemas


class CredentialsRequest(CamelModel):
    """Signup / signin body. Signin accepts either password or passwordHash."""

    name: str
    password: Optional[str] = None
    password_hash: Optional[str] = Field(default=None, alias="passwordHash")


class UserResponse(CamelModel):
    name: str
    password_hash: str = Field(alias="passwordHash")


class AuthResponse(BaseModel):
    ok: bool = True
    user: UserResponse


# Session schemas


class SessionPayload(CamelModel):
    """Create/edit body; each field is validated by the session lifecycle."""

    datetime: Optional[Any] = None
    duration_minutes: Optional[Any] = Field(default=None, alias="durationMinutes")
    club: Optional[Any] = None
    level: Optional[Any] = None
    capacity: Optional[Any] = None
    price_per_participant: Optional[Any] = Field(default=None, alias="pricePerParticipant")


class EditSessionRequest(SessionPayload):
    session_id: str = Field(alias="sessionId")


class SessionIdRequest(CamelModel):
    """Body of delete/join/leave/follow/unfollow."""

    session_id: str = Field(alias="sessionId")


class UpdateParticipantsRequest(CamelModel):
    session_id: str = Field(alias="sessionId")
    participants: List[Any]


class SendMessageRequest(CamelModel):
    session_id: str = Field(alias="sessionId")
    text: Optional[Any] = None


class MessageResponse(BaseModel):
    id: str
    sender: str
    text: str
    timestamp: str


class SessionResponse(CamelModel):
    """Session as shown to clients (no reminder bookkeeping)."""

    id: str
    datetime: str
    duration_minutes: Any = Field(alias="durationMinutes")
    club: str
    level: str
    capacity: int
    price_per_participant: Any = Field(alias="pricePerParticipant")
    organizer: str
    participants: List[str]
    followers: List[str]
    messages: List[MessageResponse]
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    participant_count: int = Field(alias="participantCount")


class SessionListResponse(CamelModel):
    ok: bool = True
    sessions: List[SessionResponse]
    clubs: List[str]
    valid_usernames: List[str] = Field(alias="validUsernames")


# Push subscription schemas


class PushSubscriptionRequest(CamelModel):
    endpoint: Optional[str] = None
    keys: Optional[Any] = None
    expiration_time: Optional[Any] = Field(default=None, alias="expirationTime")


class UnsubscribeRequest(CamelModel):
    endpoint: Optional[str] = None


class HealthResponse(CamelModel):
    """Health check response."""

    status: str
    version: str
    push_enabled: bool = Field(alias="pushEnabled")
    reminder_minutes_before_start: int = Field(alias="reminderMinutesBeforeStart")
    reminder_check_interval_seconds: int = Field(alias="reminderCheckIntervalSeconds")
