"""
Subscription service: the persisted subscriber <-> resource relation.

Subscriptions are looked up by resource far more often than by user, and a
popular resource can have any number of them, so `find_each` walks them in
keyset-paginated batches instead of loading the full set.
"""

from __future__ import annotations

import uuid
from typing import Any, AsyncIterator, Optional

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from notifyhub.core.records import record_ref
from notifyhub.models.subscription import Subscription

log = structlog.get_logger()

DEFAULT_BATCH_SIZE = 500


async def get_subscription(
    session: AsyncSession,
    user_id: uuid.UUID,
    resource_type: str,
    resource_id: uuid.UUID,
) -> Optional[Subscription]:
    return await session.get(Subscription, (user_id, resource_type, resource_id))


async def is_subscribed(session: AsyncSession, user_id: uuid.UUID, resource: Any) -> bool:
    resource_type, resource_id = record_ref(resource)
    result = await session.execute(
        select(Subscription.user_id).where(
            Subscription.user_id == user_id,
            Subscription.resource_type == resource_type,
            Subscription.resource_id == resource_id,
        )
    )
    return result.first() is not None


async def subscribe(
    session: AsyncSession,
    user_id: uuid.UUID,
    resource_type: str,
    resource_id: uuid.UUID,
) -> Subscription:
    """Subscribe a user to a resource. Subscribing twice returns the existing row."""
    existing = await get_subscription(session, user_id, resource_type, resource_id)
    if existing is not None:
        return existing

    subscription = Subscription(
        user_id=user_id,
        resource_type=resource_type,
        resource_id=resource_id,
    )
    session.add(subscription)
    await session.flush()

    log.info(
        "subscription.created",
        user_id=str(user_id),
        resource_type=resource_type,
        resource_id=str(resource_id),
    )
    return subscription


async def subscribe_to(session: AsyncSession, user_id: uuid.UUID, resource: Any) -> Subscription:
    resource_type, resource_id = record_ref(resource)
    return await subscribe(session, user_id, resource_type, resource_id)


async def unsubscribe(
    session: AsyncSession,
    user_id: uuid.UUID,
    resource_type: str,
    resource_id: uuid.UUID,
) -> int:
    """Delete a user's subscription to a resource. Returns the number of rows removed."""
    result = await session.execute(
        delete(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.resource_type == resource_type,
            Subscription.resource_id == resource_id,
        )
    )
    if result.rowcount:
        log.info(
            "subscription.deleted",
            user_id=str(user_id),
            resource_type=resource_type,
            resource_id=str(resource_id),
        )
    return result.rowcount


async def find_each(
    session: AsyncSession,
    resource_type: str,
    resource_id: uuid.UUID,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> AsyncIterator[Subscription]:
    """Yield every subscription of a resource, one keyset page at a time."""
    last_user_id: Optional[uuid.UUID] = None
    while True:
        stmt = select(Subscription).where(
            Subscription.resource_type == resource_type,
            Subscription.resource_id == resource_id,
        )
        if last_user_id is not None:
            stmt = stmt.where(Subscription.user_id > last_user_id)
        stmt = stmt.order_by(Subscription.user_id).limit(batch_size)

        result = await session.execute(stmt)
        batch = result.scalars().all()
        for subscription in batch:
            yield subscription

        if len(batch) < batch_size:
            return
        last_user_id = batch[-1].user_id


async def list_user_subscriptions(session: AsyncSession, user_id: uuid.UUID) -> list[Subscription]:
    result = await session.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .order_by(Subscription.created_at.desc())
    )
    return list(result.scalars().all())


async def delete_for_resource(
    session: AsyncSession,
    resource_type: str,
    resource_id: uuid.UUID,
) -> int:
    result = await session.execute(
        delete(Subscription).where(
            Subscription.resource_type == resource_type,
            Subscription.resource_id == resource_id,
        )
    )
    return result.rowcount
