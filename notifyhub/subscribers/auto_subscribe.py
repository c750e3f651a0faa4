"""
Auto-subscription: subscribe a related user to a related resource when a
record is created (or updated), and drop that subscription when the record
is destroyed.

For example, commenting on a post subscribes the commenter to the post:

    registry.auto_subscribes(Comment, "user", to="post",
                             if_=lambda comment, post: comment.user_id != post.user_id)

Destroying the comment removes the commenter's subscription to the post even
if they also had another reason to be subscribed; subscriptions are unique
per (user, resource).
"""

from __future__ import annotations

import uuid
from typing import Any, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from notifyhub.core.records import record_ref, type_name
from notifyhub.models.subscription import Subscription
from notifyhub.services import subscriptions as subscription_service
from notifyhub.subscribers.associations import resolve_one
from notifyhub.subscribers.dispatcher import evaluate
from notifyhub.subscribers.errors import SubscriptionEngineError
from notifyhub.subscribers.registry import AutoSubscriptionRule, RuleRegistry

log = structlog.get_logger()

# session.info key holding subscriber/resource refs captured before a destroy
CAPTURED_KEY = "notifyhub.auto_subscribers"


def _user_id(subscriber: Any) -> Optional[uuid.UUID]:
    if subscriber is None or isinstance(subscriber, uuid.UUID):
        return subscriber
    return getattr(subscriber, "id", None)


class AutoSubscriptionManager:
    def __init__(self, registry: RuleRegistry) -> None:
        self._registry = registry

    async def _resolve(self, session: AsyncSession, record: Any, rule: AutoSubscriptionRule):
        resource = await resolve_one(
            session,
            record,
            self._registry.resource_descriptor_for(rule),
            resolve_type=self._registry.subscribable_class,
        )
        subscriber = await resolve_one(
            session,
            record,
            self._registry.subscriber_descriptor_for(rule),
            resolve_type=self._registry.subscribable_class,
        )
        return _user_id(subscriber), resource

    async def subscribe(
        self,
        session: AsyncSession,
        record: Any,
        rule: AutoSubscriptionRule,
    ) -> Optional[Subscription]:
        user_id, resource = await self._resolve(session, record, rule)
        if user_id is None or resource is None:
            log.debug(
                "auto_subscription.skipped",
                record_type=type_name(record),
                record_id=str(record.id),
                reason="unresolved subscriber or resource",
            )
            return None
        if not await evaluate(rule.options.if_, record, resource):
            return None
        return await subscription_service.subscribe_to(session, user_id, resource)

    async def capture(self, session: AsyncSession, record: Any, rule: AutoSubscriptionRule) -> None:
        """Before destroy: remember who to unsubscribe from what while the associations still resolve."""
        try:
            async with session.begin_nested():
                user_id, resource = await self._resolve(session, record, rule)
        except (SubscriptionEngineError, SQLAlchemyError) as exc:
            log.error(
                "auto_subscription.capture_failed",
                record_type=type_name(record),
                record_id=str(record.id),
                error=str(exc),
            )
            user_id, resource = None, None

        captured = session.info.setdefault(CAPTURED_KEY, {})
        captured[(id(record), rule.key)] = (
            user_id,
            record_ref(resource) if resource is not None else None,
        )

    async def unsubscribe(self, session: AsyncSession, record: Any, rule: AutoSubscriptionRule) -> int:
        """After destroy: delete the captured subscription. Never raises."""
        captured = session.info.get(CAPTURED_KEY, {}).pop((id(record), rule.key), None)
        user_id, resource = captured if captured is not None else (None, None)

        if user_id is None or resource is None:
            log.error(
                "auto_subscription.unsubscribe_failed",
                record_type=type_name(record),
                record_id=str(record.id),
                reason="couldn't resolve subscriber or resource",
            )
            return 0

        resource_type, resource_id = resource
        try:
            async with session.begin_nested():
                return await subscription_service.unsubscribe(session, user_id, resource_type, resource_id)
        except SQLAlchemyError as exc:
            log.error(
                "auto_subscription.unsubscribe_failed",
                record_type=type_name(record),
                record_id=str(record.id),
                error=str(exc),
            )
            return 0

    def hooks_for(self, rule: AutoSubscriptionRule):
        """(after trigger, before destroy, after destroy) lifecycle callbacks for `rule`."""

        async def _subscribe(session: AsyncSession, record: Any) -> None:
            await self.subscribe(session, record, rule)

        async def _capture(session: AsyncSession, record: Any) -> None:
            await self.capture(session, record, rule)

        async def _unsubscribe(session: AsyncSession, record: Any) -> None:
            await self.unsubscribe(session, record, rule)

        return _subscribe, _capture, _unsubscribe
