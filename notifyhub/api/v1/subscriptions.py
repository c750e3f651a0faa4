"""
Subscription endpoints: list, subscribe, unsubscribe (current user only).
"""

from __future__ import annotations

import uuid
from typing import List

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from notifyhub.api.deps import get_registry
from notifyhub.core.auth import get_current_user
from notifyhub.core.database import get_session
from notifyhub.models.user import User
from notifyhub.schemas.subscriptions import SubscriptionCreate, SubscriptionRead
from notifyhub.services import subscriptions as subscription_service
from notifyhub.subscribers.errors import UnknownTypeError
from notifyhub.subscribers.registry import RuleRegistry

log = structlog.get_logger()

router = APIRouter()


@router.get("/", response_model=List[SubscriptionRead])
async def list_subscriptions(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """List the current user's subscriptions, newest first."""
    subscriptions = await subscription_service.list_user_subscriptions(session, user.id)
    return [SubscriptionRead.model_validate(s, from_attributes=True) for s in subscriptions]


@router.post("/", response_model=SubscriptionRead, status_code=201)
async def create_subscription(
    body: SubscriptionCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    registry: RuleRegistry = Depends(get_registry),
):
    """Subscribe the current user to a resource. Idempotent."""
    try:
        model = registry.subscribable_class(body.resource_type)
    except UnknownTypeError:
        raise HTTPException(status_code=404, detail="Unknown resource type")

    resource = await session.get(model, body.resource_id)
    if resource is None:
        raise HTTPException(status_code=404, detail="Resource not found")

    subscription = await subscription_service.subscribe(
        session, user.id, body.resource_type, body.resource_id
    )
    return SubscriptionRead.model_validate(subscription, from_attributes=True)


@router.delete("/{resource_type}/{resource_id}")
async def delete_subscription(
    resource_type: str,
    resource_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Unsubscribe the current user from a resource."""
    removed = await subscription_service.unsubscribe(session, user.id, resource_type, resource_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return {"ok": True}
