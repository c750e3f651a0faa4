"""Delete subscriptions and updates that reference a destroyed record."""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from notifyhub.core.records import record_ref
from notifyhub.services import subscriptions as subscription_service
from notifyhub.services import updates as update_service

log = structlog.get_logger()


class CleanupManager:
    """Synchronous, best-effort cleanup run after a record is destroyed.

    Each cleanup runs in a savepoint; a database error rolls back only that
    savepoint, is logged, and the destroy itself still commits.
    """

    async def resource_destroyed(self, session: AsyncSession, record: Any) -> None:
        resource_type, resource_id = record_ref(record)
        try:
            async with session.begin_nested():
                updates = await update_service.delete_for_resource(session, resource_type, resource_id)
                subscriptions = await subscription_service.delete_for_resource(
                    session, resource_type, resource_id
                )
        except SQLAlchemyError as exc:
            log.error(
                "cleanup.resource_failed",
                resource_type=resource_type,
                resource_id=str(resource_id),
                error=str(exc),
            )
            return
        log.info(
            "cleanup.resource",
            resource_type=resource_type,
            resource_id=str(resource_id),
            updates=updates,
            subscriptions=subscriptions,
        )

    async def notifier_destroyed(self, session: AsyncSession, record: Any) -> None:
        notifier_type, notifier_id = record_ref(record)
        try:
            async with session.begin_nested():
                updates = await update_service.delete_for_notifier(session, notifier_type, notifier_id)
        except SQLAlchemyError as exc:
            log.error(
                "cleanup.notifier_failed",
                notifier_type=notifier_type,
                notifier_id=str(notifier_id),
                error=str(exc),
            )
            return
        log.info("cleanup.notifier", notifier_type=notifier_type, notifier_id=str(notifier_id), updates=updates)
