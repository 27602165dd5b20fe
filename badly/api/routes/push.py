"""Push subscription route handlers."""

import logging

from fastapi import APIRouter, Depends

from badly.api.auth_dependencies import get_current_user
from badly.api.routes import to_http_exception
from badly.database.db import EntityRepository, get_repository
from badly.database.models import User
from badly.models.schemas import PushSubscriptionRequest, UnsubscribeRequest
from badly.services import push_service, user_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/vapidPublicKey")
async def get_vapid_public_key():
    """Public VAPID key the browser needs to subscribe."""
    return {"ok": True, "publicKey": push_service.VAPID_PUBLIC_KEY}


@router.post("/subscribePush")
async def subscribe_push(
    payload: PushSubscriptionRequest,
    current_user: User = Depends(get_current_user),
    repository: EntityRepository = Depends(get_repository),
):
    """Register this browser's push subscription for the current user."""
    try:
        user_service.subscribe_push(
            repository,
            current_user.name,
            payload.endpoint,
            payload.keys,
            payload.expiration_time,
        )
    except Exception as e:
        raise to_http_exception(e)
    return {"ok": True}


@router.post("/unsubscribePush")
async def unsubscribe_push(
    payload: UnsubscribeRequest,
    current_user: User = Depends(get_current_user),
    repository: EntityRepository = Depends(get_repository),
):
    try:
        user_service.unsubscribe_push(repository, payload.endpoint)
    except Exception as e:
        raise to_http_exception(e)
    return {"ok": True}
