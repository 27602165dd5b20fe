"""
Fire-and-forget channel between domain operations and the notification dispatcher.

Operations enqueue lifecycle events after their write succeeded and return
right away; a background worker drains the queue and dispatches each event.
A failing dispatch is logged and never reaches the operation that caused it.
"""

import asyncio
import logging
from typing import Callable, Optional

from badly.services.notification_service import (
    NotificationDispatcher,
    get_notification_dispatcher,
)
from badly.services.session_lifecycle import SessionEvent

logger = logging.getLogger(__name__)


class NotificationQueue:
    """In-memory queue of session events drained by one background task."""

    def __init__(
        self,
        dispatcher_factory: Callable[[], NotificationDispatcher] = get_notification_dispatcher,
    ):
        self._dispatcher_factory = dispatcher_factory
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._worker_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    def enqueue(self, event: SessionEvent) -> bool:
        """
        Hand an event to the background worker.

        Safe to call from the event loop thread or from another thread.

        Returns:
            True if queued, False if the worker is not running (event dropped)
        """
        if not self.is_running:
            logger.debug(f"Notification worker not running, dropping {event.kind.value} event")
            return False

        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None

        if running_loop is self._loop:
            self._queue.put_nowait(event)
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, event)
        return True

    async def _process_queue_worker(self) -> None:
        """Background worker that dispatches queued events one at a time."""
        while True:
            event = await self._queue.get()
            try:
                dispatcher = self._dispatcher_factory()
                pruned = await dispatcher.dispatch_event(event)
                if pruned:
                    logger.info(f"{event.kind.value} notification pruned {pruned} subscription(s)")
            except Exception as e:
                logger.error(
                    f"Error dispatching {event.kind.value} notification for session "
                    f"{event.session.id}: {e}",
                    exc_info=True,
                )
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued event has been dispatched."""
        if self._queue is not None:
            await self._queue.join()

    def start_background_worker(self) -> None:
        """Start the background worker on the running event loop."""
        if not self.is_running:
            self._loop = asyncio.get_running_loop()
            self._queue = asyncio.Queue()
            self._worker_task = asyncio.create_task(self._process_queue_worker())
            logger.info("Notification worker started")

    def stop_background_worker(self) -> None:
        """Stop the background worker. Events still queued are dropped."""
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("Notification worker stopped")


# Global queue instance
_notification_queue = NotificationQueue()


def get_notification_queue() -> NotificationQueue:
    """Get the global notification queue instance."""
    return _notification_queue
