"""
Notification dispatcher: lifecycle event -> queued fan-out job.

Runs inline in the request's session. The only work done here is the
`queue_if` admission check; everything else happens in the worker.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from notifyhub.core.queue import FanOutJob, JobQueue
from notifyhub.core.records import type_name
from notifyhub.subscribers.registry import NotificationRule, RuleRegistry

log = structlog.get_logger()


async def evaluate(predicate: Optional[Callable[..., Any]], *args: Any) -> bool:
    """Call a sync or async predicate. A missing predicate always passes."""
    if predicate is None:
        return True
    result = predicate(*args)
    if inspect.isawaitable(result):
        result = await result
    return bool(result)


class Dispatcher:
    """Turns notifier lifecycle events into `FanOutJob`s on the queue."""

    def __init__(self, registry: RuleRegistry, queue: JobQueue) -> None:
        self._registry = registry
        self._queue = queue

    async def enqueue_rule(self, record: Any, rule: NotificationRule) -> Optional[FanOutJob]:
        """Queue fan-out for one rule, unless its `queue_if` predicate rejects the record."""
        if not await evaluate(rule.options.queue_if, record):
            log.debug(
                "dispatcher.skipped",
                notifier_type=type_name(record),
                notifier_id=str(record.id),
                association=rule.association,
            )
            return None

        job = FanOutJob(
            notifier_type=type_name(record),
            notifier_id=record.id,
            association=rule.association,
            priority=rule.priority,
            method=rule.method,
        )
        await self._queue.enqueue(job, rule.priority)
        log.info(
            "dispatcher.enqueued",
            notifier_type=job.notifier_type,
            notifier_id=str(job.notifier_id),
            association=job.association,
            method=job.method,
            priority=job.priority,
        )
        return job

    async def dispatch(self, record: Any, event: str) -> list[FanOutJob]:
        """Enqueue every rule of `record`'s type that triggers on `event`."""
        jobs = []
        for rule in self._registry.rules_for(type(record)):
            if event not in rule.triggers:
                continue
            job = await self.enqueue_rule(record, rule)
            if job is not None:
                jobs.append(job)
        return jobs

    def hook_for(self, rule: NotificationRule):
        """Lifecycle callback that enqueues `rule` for the saved record."""

        async def _enqueue(session: AsyncSession, record: Any) -> None:
            await self.enqueue_rule(record, rule)

        _enqueue.__qualname__ = f"enqueue[{rule.notifier.__name__}.{rule.association}]"
        return _enqueue
