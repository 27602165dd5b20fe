"""
Shared pytest configuration for badly tests.

Every test gets its own data directory under ``tmp_path``; nothing touches the
real DATA_DIR. Push delivery goes through FakeTransport, never the network.
"""

import os

# Must be set before badly.api.routes is imported (disables rate limiting)
os.environ.setdefault("ENV", "test")

from datetime import datetime, timedelta  # noqa: E402
from typing import Dict, List, Optional, Tuple  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytz  # noqa: E402

from badly.database.db import EntityRepository, set_repository  # noqa: E402
from badly.database.models import PushSubscription, Session, User  # noqa: E402
from badly.services.push_service import PushDeliveryError  # noqa: E402
from badly.utils.datetime_utils import to_iso_string  # noqa: E402

CLUBS = ["Gymnase Nord", "Complexe Sud"]


class FakeTransport:
    """Push transport that records deliveries and fails on demand."""

    def __init__(self, failures: Optional[Dict[str, int]] = None):
        # endpoint -> HTTP status to fail with
        self.failures = failures or {}
        self.sent: List[Tuple[str, str]] = []

    def send(self, subscription: PushSubscription, payload: str) -> None:
        status = self.failures.get(subscription.endpoint)
        if status is not None:
            raise PushDeliveryError(f"Push failed with {status}", status_code=status)
        self.sent.append((subscription.endpoint, payload))

    @property
    def endpoints(self) -> List[str]:
        return [endpoint for endpoint, _ in self.sent]


@pytest.fixture
def now():
    """Fixed current instant."""
    return datetime(2026, 6, 1, 10, 0, tzinfo=pytz.UTC)


@pytest.fixture
def repository(tmp_path):
    """Repository in a temporary data directory, seeded with the club list."""
    repo = EntityRepository(tmp_path / "data")
    repo.write_clubs(CLUBS)
    set_repository(repo)
    yield repo
    set_repository(None)


@pytest.fixture
def queue():
    """Notification queue stand-in that records enqueued events."""
    return MagicMock()


@pytest.fixture
def transport():
    return FakeTransport()


def make_user(name: str, endpoints: Optional[List[str]] = None, password_hash: str = "hash") -> User:
    return User(
        name=name,
        password_hash=password_hash,
        push_subscriptions=[
            PushSubscription(endpoint=endpoint, keys={"p256dh": "key", "auth": "auth"})
            for endpoint in (endpoints or [])
        ],
    )


def make_session(
    now: datetime,
    session_id: str = "s1",
    organizer: str = "alice",
    starts_in: timedelta = timedelta(days=1),
    duration: int = 90,
    capacity: int = 4,
    club: str = CLUBS[0],
    participants: Optional[List[str]] = None,
    followers: Optional[List[str]] = None,
    reminder_sent: bool = False,
) -> Session:
    return Session(
        id=session_id,
        datetime=to_iso_string(now + starts_in),
        duration_minutes=duration,
        club=club,
        level="moyen",
        capacity=capacity,
        price_per_participant=5,
        organizer=organizer,
        participants=participants or [],
        followers=followers or [],
        messages=[],
        created_at=to_iso_string(now),
        reminder_sent=reminder_sent,
    )
