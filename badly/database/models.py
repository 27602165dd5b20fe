"""
Entity models for the JSON collections (users.json, sessions.json).

Records are parsed once at load time so optional fields get explicit defaults,
and dumped back with their camelCase names (``model_dump(by_alias=True)``).
Unknown keys found on disk are preserved.
"""

import enum
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from badly.utils.datetime_utils import parse_datetime


class SessionState(str, enum.Enum):
    """Temporal state of a session relative to now."""

    FUTURE = "future"
    STARTED = "started"
    EXPIRED = "expired"


class EntityModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_record(self) -> Dict[str, Any]:
        """Serialize to the on-disk JSON shape."""
        return self.model_dump(by_alias=True)


class PushSubscription(EntityModel):
    """Web Push subscription registered by one browser."""

    endpoint: str
    keys: Any = Field(default_factory=dict)
    expiration_time: Optional[Any] = Field(default=None, alias="expirationTime")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")


class User(EntityModel):
    name: str
    normalized: str = ""
    password_hash: str = Field(default="", alias="passwordHash")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    push_subscriptions: List[PushSubscription] = Field(
        default_factory=list, alias="pushSubscriptions"
    )

    @model_validator(mode="after")
    def fill_normalized(self):
        if not self.normalized:
            self.normalized = self.name.strip().lower()
        return self


class SessionMessage(EntityModel):
    id: str
    sender: str
    text: str
    timestamp: str


class Session(EntityModel):
    """A scheduled badminton session."""

    id: str
    datetime: str
    duration_minutes: Union[int, float] = Field(alias="durationMinutes")
    club: str
    level: str
    capacity: int
    price_per_participant: Union[int, float] = Field(default=0, alias="pricePerParticipant")
    organizer: str
    participants: List[str] = Field(default_factory=list)
    followers: List[str] = Field(default_factory=list)
    messages: List[SessionMessage] = Field(default_factory=list)
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    reminder_sent: bool = Field(default=False, alias="reminderSent")

    def start_time(self) -> Optional[datetime]:
        return parse_datetime(self.datetime)

    def end_time(self) -> Optional[datetime]:
        start = self.start_time()
        if start is None:
            return None
        return start + timedelta(minutes=self.duration_minutes)

    def state(self, now: datetime) -> SessionState:
        """
        Classify the session at ``now``.

        A session with an unparsable datetime is treated as expired.
        """
        start = self.start_time()
        if start is None:
            return SessionState.EXPIRED
        if now < start:
            return SessionState.FUTURE
        if now < self.end_time():
            return SessionState.STARTED
        return SessionState.EXPIRED

    def has_started(self, now: datetime) -> bool:
        return self.state(now) != SessionState.FUTURE

    def has_expired(self, now: datetime) -> bool:
        return self.state(now) == SessionState.EXPIRED

    @property
    def occupied_count(self) -> int:
        """Participants plus the organizer."""
        return len(self.participants) + 1

    @property
    def is_full(self) -> bool:
        return self.occupied_count >= self.capacity
