"""
Fan-out engine: turns one notifier event into per-subscriber Update rows.

Runs inside a worker, one invocation per queued `FanOutJob`. For every
subscribable the notifier's association resolves to:

1. skip if absent;
2. with ``include_owner``, give the subscribable's owner one update when the
   owner isn't the actor (or the notifier is the subscribable itself) and
   the owner isn't already a subscriber;
3. walk the subscriptions in pages and skip a subscriber when
   a. they are the notifier's actor (unless ``include_owner``),
   b. they subscribed after the notifier was last updated,
   c. they still have an unviewed update from this notifier about this resource,
   d. the rule's ``if`` predicate rejects them;
   otherwise create their Update.

Rule 3c is a read-then-write with no lock or unique constraint: two
near-simultaneous jobs for the same notifier can both pass it and leave two
unviewed updates. That is accepted.
"""

from __future__ import annotations

import inspect
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from notifyhub.core.queue import FanOutJob
from notifyhub.core.records import as_utc, owner_id_of, record_ref, same_record
from notifyhub.models.subscription import Subscription
from notifyhub.models.update import Update
from notifyhub.services import subscriptions as subscription_service
from notifyhub.services import updates as update_service
from notifyhub.subscribers.associations import DEFAULT_BATCH_SIZE, iter_targets
from notifyhub.subscribers.dispatcher import evaluate
from notifyhub.subscribers.registry import (
    NOTIFY_OWNER,
    NOTIFY_SUBSCRIBERS,
    NotificationKind,
    NotificationRule,
    RuleRegistry,
)

log = structlog.get_logger()


class FanOutEngine:
    """Resolves subscribers for a notifier event and writes their Updates."""

    def __init__(self, registry: RuleRegistry, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self._registry = registry
        self._batch_size = batch_size

    @property
    def registry(self) -> RuleRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Job entry point
    # ------------------------------------------------------------------

    async def run(self, session: AsyncSession, job: FanOutJob) -> int:
        """Load the job's notifier and run its notification method.

        Returns the number of updates created (0 when the notifier is gone).
        """
        notifier_cls = self._registry.notifier_class(job.notifier_type)
        notifier = await session.get(notifier_cls, job.notifier_id)
        if notifier is None:
            log.warning(
                "fanout.notifier_missing",
                notifier_type=job.notifier_type,
                notifier_id=str(job.notifier_id),
                association=job.association,
            )
            return 0

        if job.method == NOTIFY_SUBSCRIBERS:
            return await self.notify_subscribers_of(session, notifier, job.association)
        if job.method == NOTIFY_OWNER:
            return await self.notify_owner_of(session, notifier, job.association)

        # Custom `with` method defined on the notifier: method(session, engine, association)
        method = getattr(notifier, job.method, None)
        if method is None or not callable(method):
            raise AttributeError(f"{job.notifier_type} has no notification method {job.method!r}")
        result = method(session, self, job.association)
        if inspect.isawaitable(result):
            result = await result
        return result if isinstance(result, int) else 0

    # ------------------------------------------------------------------
    # Notification methods
    # ------------------------------------------------------------------

    async def notify_subscribers_of(self, session: AsyncSession, notifier: Any, association: str) -> int:
        """Fan out one Update per eligible subscriber of every subscribable `association` yields."""
        rule = self._registry.rule_for(type(notifier), association, NotificationKind.SUBSCRIBERS)
        descriptor = self._registry.descriptor_for(rule)

        created = 0
        async for subscribable in iter_targets(
            session,
            notifier,
            descriptor,
            resolve_type=self._registry.subscribable_class,
            batch_size=self._batch_size,
        ):
            created += await self._fan_out(session, notifier, subscribable, rule)

        log.info(
            "fanout.completed",
            notifier_type=type(notifier).__name__,
            notifier_id=str(notifier.id),
            association=association,
            kind=descriptor.kind.value,
            created=created,
        )
        return created

    async def notify_owner_of(self, session: AsyncSession, notifier: Any, association: str) -> int:
        """One Update for the owner of the record(s) `association` yields."""
        rule = self._registry.rule_for(type(notifier), association, NotificationKind.OWNER)
        descriptor = self._registry.descriptor_for(rule)

        created = 0
        async for resource in iter_targets(
            session,
            notifier,
            descriptor,
            resolve_type=self._registry.subscribable_class,
            batch_size=self._batch_size,
        ):
            if resource is None:
                continue
            update = await update_service.create_update(
                session,
                subscriber_id=owner_id_of(resource),
                resource=resource,
                notifier=notifier,
                notification=rule.notification,
            )
            if update is not None:
                created += 1
        return created

    # ------------------------------------------------------------------
    # Per-subscribable procedure
    # ------------------------------------------------------------------

    async def _fan_out(
        self,
        session: AsyncSession,
        notifier: Any,
        subscribable: Any,
        rule: NotificationRule,
    ) -> int:
        if subscribable is None:
            return 0

        created = 0
        actor_id = owner_id_of(notifier)

        if rule.include_owner:
            owner_update = await self._notify_unsubscribed_owner(session, notifier, subscribable, rule)
            if owner_update is not None:
                created += 1

        resource_type, resource_id = record_ref(subscribable)
        async for subscription in subscription_service.find_each(
            session, resource_type, resource_id, batch_size=self._batch_size
        ):
            if not await self._should_notify(session, notifier, subscribable, subscription, rule, actor_id):
                continue
            update = await update_service.create_update(
                session,
                subscriber_id=subscription.user_id,
                resource=subscribable,
                notifier=notifier,
                notification=rule.notification,
            )
            if update is not None:
                created += 1
        return created

    async def _notify_unsubscribed_owner(
        self,
        session: AsyncSession,
        notifier: Any,
        subscribable: Any,
        rule: NotificationRule,
    ) -> Optional[Update]:
        owner_id = owner_id_of(subscribable)
        if owner_id is None:
            return None
        # Owner is someone other than the actor, or the notifier is the subscribable itself.
        if not (owner_id != owner_id_of(notifier) or same_record(subscribable, notifier)):
            return None
        if await subscription_service.is_subscribed(session, owner_id, subscribable):
            return None  # the subscriber loop covers them
        return await update_service.create_update(
            session,
            subscriber_id=owner_id,
            resource=subscribable,
            notifier=notifier,
            notification=rule.notification,
        )

    async def _should_notify(
        self,
        session: AsyncSession,
        notifier: Any,
        subscribable: Any,
        subscription: Subscription,
        rule: NotificationRule,
        actor_id: Any,
    ) -> bool:
        if actor_id is not None and subscription.user_id == actor_id and not rule.include_owner:
            return False

        event_time = as_utc(getattr(notifier, "updated_at", None))
        if event_time is not None and as_utc(subscription.created_at) > event_time:
            return False

        if await update_service.has_unviewed_from(session, subscription.user_id, subscribable, notifier):
            return False

        return await evaluate(rule.options.if_, notifier, subscribable, subscription)
