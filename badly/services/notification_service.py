"""
Push notification dispatch and subscription cleanup.

A dispatch fans one payload out to every matching subscription. Deliveries are
independent: a failure is logged and the next subscription is still tried.
Subscriptions reported gone by the push service (HTTP 404/410) are removed from
their owners once the fan-out is over.
"""

import asyncio
import json
import logging
from typing import Iterable, List, Optional, Set, Tuple

from badly.database.db import EntityRepository, get_repository
from badly.database.models import PushSubscription, Session, SessionMessage, User
from badly.services.push_service import PushDeliveryError, get_push_transport
from badly.services.session_lifecycle import EventKind, SessionEvent
from badly.utils.constants import REMINDER_MINUTES_BEFORE_START
from badly.utils.datetime_utils import format_session_date

logger = logging.getLogger(__name__)

CHAT_PREVIEW_LENGTH = 100


def collect_subscriptions(
    users: Iterable[User],
    target_user: Optional[str] = None,
    excluded_users: Optional[Iterable[str]] = None,
) -> List[Tuple[str, PushSubscription]]:
    """
    Gather (user name, subscription) pairs for a dispatch.

    Args:
        users: All users
        target_user: Only this user's subscriptions (case-insensitive)
        excluded_users: Skip these users (case-insensitive, blank names ignored)

    Returns:
        Subscriptions in user order, then subscription order
    """
    excluded = {name.lower() for name in (excluded_users or []) if name}
    target = target_user.lower() if target_user else None

    results = []
    for user in users:
        if not user.push_subscriptions:
            continue
        user_key = user.name.lower()
        if target is not None and user_key != target:
            continue
        if user_key in excluded:
            continue
        for subscription in user.push_subscriptions:
            results.append((user.name, subscription))
    return results


def build_payload(title: str, body: str, tag: str) -> str:
    """Serialize the message body handed to the push transport."""
    return json.dumps({"title": title, "body": body, "tag": tag, "url": "/"}, ensure_ascii=False)


def session_tag(session: Session, event: Optional[str] = None) -> str:
    """Collapse key for the client: ``session-<id>[-<event>]``."""
    return f"session-{session.id}-{event}" if event else f"session-{session.id}"


class NotificationDispatcher:
    """Sends push notifications to users and prunes dead subscriptions."""

    def __init__(self, repository: EntityRepository, transport=None):
        """
        Args:
            repository: Entity repository (users are read for subscriptions)
            transport: Object with a blocking ``send(subscription, payload)``
                method, or None to disable delivery
        """
        self.repository = repository
        self.transport = transport

    async def send(
        self,
        title: str,
        body: str,
        tag: str,
        target_user: Optional[str] = None,
        excluded_users: Optional[Iterable[str]] = None,
    ) -> int:
        """
        Deliver one notification to every matching subscription.

        Returns:
            Number of subscriptions pruned because the push service reported them gone
        """
        if self.transport is None:
            logger.debug("Push transport not configured, notification skipped")
            return 0

        users = self.repository.read_users()
        subscriptions = collect_subscriptions(users, target_user, excluded_users)
        if not subscriptions:
            if target_user:
                logger.debug(f"No push subscription found for {target_user}")
            else:
                logger.debug("No push subscription registered")
            return 0

        payload = build_payload(title, body, tag)
        gone_endpoints: Set[str] = set()

        for user_name, subscription in subscriptions:
            try:
                await asyncio.to_thread(self.transport.send, subscription, payload)
                logger.debug(f"Notification sent to {subscription.endpoint[:50]}...")
            except PushDeliveryError as e:
                logger.warning(
                    f"Push delivery to {user_name} failed (status {e.status_code}): {e}"
                )
                if e.is_gone:
                    gone_endpoints.add(subscription.endpoint)
            except Exception as e:
                logger.warning(f"Push delivery to {user_name} failed: {e}", exc_info=True)

        if not gone_endpoints:
            return 0
        return self.prune_endpoints(gone_endpoints)

    def prune_endpoints(self, endpoints: Set[str]) -> int:
        """
        Remove subscriptions with the given endpoints from every user.

        Re-reads the users under the collection lock so that changes made while
        the deliveries were in flight are kept.
        """
        with self.repository.users.lock:
            users = self.repository.read_users()
            removed = 0
            for user in users:
                before = len(user.push_subscriptions)
                user.push_subscriptions = [
                    sub for sub in user.push_subscriptions if sub.endpoint not in endpoints
                ]
                removed += before - len(user.push_subscriptions)
            if removed:
                self.repository.write_users(users)
                logger.info(f"{removed} expired push subscription(s) removed")
        return removed

    async def _send_to_each(
        self, recipients: Iterable[str], title: str, body: str, tag: str
    ) -> int:
        pruned = 0
        for user_name in recipients:
            pruned += await self.send(title, body, tag, target_user=user_name)
        return pruned

    #
    # Notification intents
    #

    async def notify_new_session(self, session: Session) -> int:
        """Everyone except the organizer."""
        title = "🏸 New badminton session!"
        body = (
            f"{session.club} - {format_session_date(session.datetime)}\n"
            f"Level: {session.level}\n"
            f"Organized by {session.organizer}"
        )
        excluded = [session.organizer] if session.organizer else None
        return await self.send(title, body, session_tag(session), excluded_users=excluded)

    async def notify_spot_available(self, session: Session) -> int:
        """Everyone."""
        title = "🎾 A spot just opened up!"
        body = f"{session.club} - {format_session_date(session.datetime)}\nLevel: {session.level}"
        return await self.send(title, body, session_tag(session, "available"))

    async def notify_participant_joined(self, session: Session, participant_name: str) -> int:
        """Organizer and followers."""
        title = "🏸 New participant!"
        body = f"{participant_name} joined the session on {format_session_date(session.datetime)}"
        recipients = [name for name in [session.organizer, *session.followers] if name]
        return await self._send_to_each(recipients, title, body, session_tag(session, "join"))

    async def notify_participant_left(self, session: Session, participant_name: str) -> int:
        """Organizer and followers."""
        title = "🏸 A participant left"
        body = f"{participant_name} left the session on {format_session_date(session.datetime)}"
        recipients = [name for name in [session.organizer, *session.followers] if name]
        return await self._send_to_each(recipients, title, body, session_tag(session, "leave"))

    async def notify_session_reminder(self, session: Session) -> int:
        """Organizer and participants."""
        title = f"⏰ Session in {REMINDER_MINUTES_BEFORE_START} minutes"
        body = (
            f"{session.club} - {format_session_date(session.datetime)}\n"
            f"See you on the court soon!"
        )
        recipients = [name for name in [session.organizer, *session.participants] if name]
        return await self._send_to_each(recipients, title, body, session_tag(session, "reminder"))

    async def notify_chat_message(self, session: Session, message: SessionMessage) -> int:
        """Organizer, participants and followers except the sender, each once."""
        recipients = []
        for name in [session.organizer, *session.participants, *session.followers]:
            if name and name != message.sender and name not in recipients:
                recipients.append(name)
        if not recipients:
            return 0

        title = f"💬 {message.sender}"
        if len(message.text) > CHAT_PREVIEW_LENGTH:
            body = message.text[: CHAT_PREVIEW_LENGTH - 3] + "..."
        else:
            body = message.text
        return await self._send_to_each(recipients, title, body, session_tag(session, "chat"))

    async def dispatch_event(self, event: SessionEvent) -> int:
        """Send the notification matching a lifecycle event."""
        if event.kind == EventKind.NEW_SESSION:
            return await self.notify_new_session(event.session)
        if event.kind == EventKind.SPOT_AVAILABLE:
            return await self.notify_spot_available(event.session)
        if event.kind == EventKind.PARTICIPANT_JOINED:
            return await self.notify_participant_joined(event.session, event.actor)
        if event.kind == EventKind.PARTICIPANT_LEFT:
            return await self.notify_participant_left(event.session, event.actor)
        if event.kind == EventKind.REMINDER:
            return await self.notify_session_reminder(event.session)
        if event.kind == EventKind.CHAT_MESSAGE:
            return await self.notify_chat_message(event.session, event.message)
        raise ValueError(f"Unknown event kind: {event.kind}")


_dispatcher: Optional[NotificationDispatcher] = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """Get the global dispatcher, bound to the global repository and transport."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher(get_repository(), get_push_transport())
    return _dispatcher


def set_notification_dispatcher(dispatcher: Optional[NotificationDispatcher]) -> None:
    """Replace the global dispatcher (used by tests)."""
    global _dispatcher
    _dispatcher = dispatcher
