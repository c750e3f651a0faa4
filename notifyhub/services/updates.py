"""
Update service: create, query, mark viewed and bulk-delete notification rows.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import structlog
from pydantic import ValidationError
from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from notifyhub.core.records import record_ref
from notifyhub.models.update import Update
from notifyhub.schemas.updates import UpdateCreate

log = structlog.get_logger()


async def create_update(
    session: AsyncSession,
    *,
    subscriber_id: Optional[uuid.UUID],
    resource: Any,
    notifier: Any,
    notification: str,
) -> Optional[Update]:
    """Persist one Update. Returns None (and logs) when the fields don't validate."""
    resource_type, resource_id = record_ref(resource)
    notifier_type, notifier_id = record_ref(notifier)
    try:
        fields = UpdateCreate(
            subscriber_id=subscriber_id,
            resource_type=resource_type,
            resource_id=resource_id,
            notifier_type=notifier_type,
            notifier_id=notifier_id,
            notification=notification,
        )
    except ValidationError as exc:
        log.warning(
            "update.invalid",
            resource_type=resource_type,
            notifier_type=notifier_type,
            errors=exc.errors(include_url=False, include_input=False),
        )
        return None

    row = Update(**fields.model_dump())
    session.add(row)
    await session.flush()
    return row


async def has_unviewed_from(
    session: AsyncSession,
    subscriber_id: uuid.UUID,
    resource: Any,
    notifier: Any,
) -> bool:
    """True if the subscriber already holds an unviewed update from this notifier about this resource."""
    resource_type, resource_id = record_ref(resource)
    notifier_type, notifier_id = record_ref(notifier)
    result = await session.execute(
        select(Update.id)
        .where(
            Update.subscriber_id == subscriber_id,
            Update.resource_type == resource_type,
            Update.resource_id == resource_id,
            Update.notifier_type == notifier_type,
            Update.notifier_id == notifier_id,
            Update.viewed_at.is_(None),
        )
        .limit(1)
    )
    return result.first() is not None


async def list_updates(
    session: AsyncSession,
    subscriber_id: uuid.UUID,
    *,
    unviewed_only: bool = False,
    limit: int = 50,
) -> list[Update]:
    stmt = select(Update).where(Update.subscriber_id == subscriber_id)
    if unviewed_only:
        stmt = stmt.where(Update.viewed_at.is_(None))
    stmt = stmt.order_by(Update.created_at.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def mark_viewed(
    session: AsyncSession,
    subscriber_id: uuid.UUID,
    *,
    update_ids: Optional[Sequence[uuid.UUID]] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[uuid.UUID] = None,
) -> int:
    """Mark a subscriber's unviewed updates viewed; optionally narrowed by ids or resource."""
    stmt = (
        update(Update)
        .where(Update.subscriber_id == subscriber_id, Update.viewed_at.is_(None))
        .values(viewed_at=datetime.now(timezone.utc))
    )
    if update_ids is not None:
        stmt = stmt.where(Update.id.in_(list(update_ids)))
    if resource_type is not None:
        stmt = stmt.where(Update.resource_type == resource_type, Update.resource_id == resource_id)

    result = await session.execute(stmt.execution_options(synchronize_session="fetch"))
    log.info("updates.marked_viewed", subscriber_id=str(subscriber_id), count=result.rowcount)
    return result.rowcount


async def delete_for_resource(
    session: AsyncSession,
    resource_type: str,
    resource_id: uuid.UUID,
) -> int:
    result = await session.execute(
        delete(Update).where(
            Update.resource_type == resource_type,
            Update.resource_id == resource_id,
        )
    )
    return result.rowcount


async def delete_for_notifier(
    session: AsyncSession,
    notifier_type: str,
    notifier_id: uuid.UUID,
) -> int:
    result = await session.execute(
        delete(Update).where(
            Update.notifier_type == notifier_type,
            Update.notifier_id == notifier_id,
        )
    )
    return result.rowcount
