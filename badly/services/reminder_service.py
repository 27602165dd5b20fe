"""
Session reminder scheduler.

Background worker that scans the sessions shortly after startup and then every
REMINDER_CHECK_INTERVAL_SECONDS. Sessions starting within the next
REMINDER_MINUTES_BEFORE_START minutes get one reminder sent to the organizer and
participants. The ``reminderSent`` flag is persisted, so a session is reminded
once across scans and restarts; moving its datetime re-arms the reminder.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from badly.database.db import EntityRepository, get_repository
from badly.services.notification_queue import NotificationQueue, get_notification_queue
from badly.services.session_lifecycle import EventKind, SessionEvent, due_for_reminder
from badly.utils.constants import (
    REMINDER_CHECK_INTERVAL_SECONDS,
    REMINDER_INITIAL_DELAY_SECONDS,
    REMINDER_MINUTES_BEFORE_START,
)
from badly.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


class ReminderScheduler:
    """Background service that sends session reminders."""

    def __init__(
        self,
        repository: Optional[EntityRepository] = None,
        queue: Optional[NotificationQueue] = None,
        interval_seconds: float = REMINDER_CHECK_INTERVAL_SECONDS,
        initial_delay_seconds: float = REMINDER_INITIAL_DELAY_SECONDS,
        lead_minutes: int = REMINDER_MINUTES_BEFORE_START,
    ):
        self._repository = repository
        self._queue = queue
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self.lead_minutes = lead_minutes
        self.lead = timedelta(minutes=lead_minutes)
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def repository(self) -> EntityRepository:
        return self._repository or get_repository()

    @property
    def queue(self) -> NotificationQueue:
        return self._queue or get_notification_queue()

    def start(self) -> None:
        """Start the background reminder worker."""
        if self._worker_task is None or self._worker_task.done():
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._poll_loop())
            logger.info(
                f"Reminder scheduler started ({self.lead_minutes} min before "
                f"start, every {self.interval_seconds}s)"
            )

    def stop(self) -> None:
        """Stop the background reminder worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("Reminder scheduler stopped")

    async def _wait(self, timeout: float) -> bool:
        """Sleep for ``timeout`` seconds. Returns True if stop was signalled."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def _poll_loop(self) -> None:
        """Initial delay, then scan and wait for the interval until stopped."""
        if await self._wait(self.initial_delay_seconds):
            return
        while not self._stop_event.is_set():
            try:
                self.scan()
            except Exception as e:
                logger.error(f"Error in reminder scheduler: {e}", exc_info=True)

            if await self._wait(self.interval_seconds):
                break

    def scan(self, now: Optional[datetime] = None) -> int:
        """
        Flag every session due for a reminder and queue its notification.

        Args:
            now: Current instant (defaults to utcnow())

        Returns:
            Number of reminders queued
        """
        now = now or utcnow()
        repository = self.repository

        with repository.sessions.lock:
            sessions = repository.read_sessions()
            due = [session for session in sessions if due_for_reminder(session, now, self.lead)]
            if not due:
                return 0
            for session in due:
                session.reminder_sent = True
            repository.write_sessions(sessions)

        queue = self.queue
        for session in due:
            logger.info(f"Sending reminder for session {session.id} ({session.club})")
            queue.enqueue(SessionEvent(EventKind.REMINDER, session))
        return len(due)


# Global scheduler instance
_reminder_scheduler: Optional[ReminderScheduler] = None


def get_reminder_scheduler() -> ReminderScheduler:
    """Get the global reminder scheduler instance."""
    global _reminder_scheduler
    if _reminder_scheduler is None:
        _reminder_scheduler = ReminderScheduler()
    return _reminder_scheduler
