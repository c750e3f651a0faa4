"""
Wires a populated RuleRegistry into lifecycle hooks.

    registry = build_registry()
    hooks = LifecycleHooks()
    engine = SubscriptionEngine(registry, hooks, ArqJobQueue(pool, settings.queue_prefix))
    engine.install()

`install` freezes the registry, then registers:

- one dispatcher hook per (notification rule, trigger event);
- auto-subscribe / capture / unsubscribe hooks per auto-subscription rule;
- one cleanup hook per subscribable type and one per notifier type.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from notifyhub.core.config import get_settings
from notifyhub.core.lifecycle import HookPhase, LifecycleEvent, LifecycleHooks
from notifyhub.core.queue import ArqJobQueue, JobQueue
from notifyhub.core.redis import get_arq_pool
from notifyhub.subscribers.associations import DEFAULT_BATCH_SIZE
from notifyhub.subscribers.auto_subscribe import AutoSubscriptionManager
from notifyhub.subscribers.cleanup import CleanupManager
from notifyhub.subscribers.dispatcher import Dispatcher
from notifyhub.subscribers.fanout import FanOutEngine
from notifyhub.subscribers.registry import RuleRegistry

log = structlog.get_logger()


class SubscriptionEngine:
    def __init__(
        self,
        registry: RuleRegistry,
        hooks: LifecycleHooks,
        queue: JobQueue,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self.registry = registry
        self.hooks = hooks
        self.dispatcher = Dispatcher(registry, queue)
        self.fanout = FanOutEngine(registry, batch_size=batch_size)
        self.auto_subscriptions = AutoSubscriptionManager(registry)
        self.cleanup = CleanupManager()
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    def install(self) -> None:
        if self._installed:
            return
        if not self.registry.frozen:
            self.registry.freeze()

        hooks = self.hooks
        for model in self.registry.subscribable_types():
            hooks.on(model, LifecycleEvent.DESTROY, self.cleanup.resource_destroyed)

        for model in self.registry.notifier_types():
            hooks.on(model, LifecycleEvent.DESTROY, self.cleanup.notifier_destroyed)
            for rule in self.registry.declared_rules(model):
                callback = self.dispatcher.hook_for(rule)
                for trigger in sorted(rule.triggers, key=lambda e: e.value):
                    hooks.on(model, trigger, callback)

        for model in self.registry.auto_subscribing_types():
            for rule in self.registry.declared_auto_subscription_rules(model):
                subscribe, capture, unsubscribe = self.auto_subscriptions.hooks_for(rule)
                hooks.on(model, rule.trigger, subscribe)
                hooks.on(model, LifecycleEvent.DESTROY, capture, phase=HookPhase.BEFORE)
                hooks.on(model, LifecycleEvent.DESTROY, unsubscribe)

        self._installed = True
        log.info(
            "engine.installed",
            subscribables=len(self.registry.subscribable_types()),
            notifiers=len(self.registry.notifier_types()),
        )

    async def notify_subscribers_of(self, session: AsyncSession, notifier: Any, association: str) -> int:
        return await self.fanout.notify_subscribers_of(session, notifier, association)

    async def notify_owner_of(self, session: AsyncSession, notifier: Any, association: str) -> int:
        return await self.fanout.notify_owner_of(session, notifier, association)


async def build_subscription_engine(registry: RuleRegistry, hooks: LifecycleHooks) -> SubscriptionEngine:
    """Engine wired to the ARQ queue from settings, with hooks installed."""
    settings = get_settings()
    queue = ArqJobQueue(await get_arq_pool(), settings.queue_prefix)
    engine = SubscriptionEngine(registry, hooks, queue, batch_size=settings.fanout_batch_size)
    engine.install()
    return engine
