"""
Web Push transport (VAPID) built on pywebpush.

Only knows how to deliver one payload to one subscription; recipient selection
and pruning live in notification_service.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pywebpush import WebPushException, webpush

from badly.database.models import PushSubscription

load_dotenv()

logger = logging.getLogger(__name__)

VAPID_PUBLIC_KEY = os.getenv("VAPID_PUBLIC_KEY", "")
VAPID_PRIVATE_KEY = os.getenv("VAPID_PRIVATE_KEY", "")
VAPID_EMAIL = os.getenv("VAPID_EMAIL", "")

# Seconds the push service keeps an undelivered message
PUSH_TTL_SECONDS = 60


class PushDeliveryError(Exception):
    """Delivery to one subscription failed; ``status_code`` is the push service's HTTP status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_gone(self) -> bool:
        """The subscription no longer exists and should be pruned."""
        return self.status_code in (404, 410)


class WebPushTransport:
    """Sends serialized payloads with pywebpush.webpush()."""

    def __init__(self, private_key: str, email: str, ttl: int = PUSH_TTL_SECONDS):
        self.private_key = private_key
        subject = email if email.startswith(("mailto:", "https://")) else f"mailto:{email}"
        self.vapid_claims = {"sub": subject}
        self.ttl = ttl

    def send(self, subscription: PushSubscription, payload: str) -> None:
        """
        Deliver ``payload`` to one subscription. Blocking (HTTP request).

        Raises:
            PushDeliveryError: If the push service rejected the message
        """
        try:
            webpush(
                subscription_info={"endpoint": subscription.endpoint, "keys": subscription.keys},
                data=payload,
                vapid_private_key=self.private_key,
                vapid_claims=dict(self.vapid_claims),
                ttl=self.ttl,
            )
        except WebPushException as e:
            # Response objects are falsy for 4xx statuses; compare against None
            response = getattr(e, "response", None)
            status_code = response.status_code if response is not None else None
            raise PushDeliveryError(str(e), status_code=status_code) from e


def is_push_configured() -> bool:
    return bool(VAPID_PUBLIC_KEY and VAPID_PRIVATE_KEY and VAPID_EMAIL)


_transport: Optional[WebPushTransport] = None


def get_push_transport() -> Optional[WebPushTransport]:
    """
    Get the global transport, or None when VAPID keys are not configured.
    """
    global _transport
    if _transport is None and is_push_configured():
        _transport = WebPushTransport(VAPID_PRIVATE_KEY, VAPID_EMAIL)
        logger.info("Web Push configured")
    elif _transport is None:
        logger.debug("VAPID keys missing, push notifications disabled")
    return _transport
