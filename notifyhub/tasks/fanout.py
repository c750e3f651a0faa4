"""
ARQ background task: run one fan-out job per enqueued notifier event.

Each priority has its own queue; start one worker per queue, e.g.

    NOTIFYHUB_WORKER_PRIORITY=1 arq notifyhub.tasks.fanout.WorkerSettings
"""

from __future__ import annotations

import structlog
from arq.worker import Retry

from notifyhub.core.config import get_settings
from notifyhub.core.database import session_scope
from notifyhub.core.logging import configure_logging
from notifyhub.core.queue import FanOutJob, queue_name_for
from notifyhub.core.redis import redis_settings
from notifyhub.subscribers.fanout import FanOutEngine
from notifyhub.subscribers.registry import RuleRegistry

log = structlog.get_logger()
settings = get_settings()


def build_registry() -> RuleRegistry:
    """Build the application's frozen registry from NOTIFYHUB_RULES_FACTORY."""
    if settings.rules_factory is None:
        raise RuntimeError("NOTIFYHUB_RULES_FACTORY is not set; workers need the application's rules")
    registry = settings.rules_factory()
    if not isinstance(registry, RuleRegistry):
        raise TypeError(f"rules factory returned {type(registry).__name__}, expected RuleRegistry")
    if not registry.frozen:
        registry.freeze()
    return registry


async def startup(ctx: dict) -> None:
    configure_logging(settings.log_level, settings.log_format, service="worker")
    ctx["engine"] = FanOutEngine(build_registry(), batch_size=settings.fanout_batch_size)
    log.info("worker.started", queue=WorkerSettings.queue_name)


async def shutdown(ctx: dict) -> None:
    log.info("worker.stopped", queue=WorkerSettings.queue_name)


async def run_fanout_job(ctx: dict, payload: dict) -> int:
    """Execute a queued fan-out job. Returns the number of updates created."""
    job = FanOutJob.model_validate(payload)
    engine: FanOutEngine = ctx["engine"]
    log_ctx = {
        "notifier_type": job.notifier_type,
        "notifier_id": str(job.notifier_id),
        "association": job.association,
        "method": job.method,
        "job_try": ctx.get("job_try", 1),
    }

    try:
        async with session_scope() as session:
            created = await engine.run(session, job)
    except Exception as exc:
        job_try = ctx.get("job_try", 1)
        if job_try >= settings.fanout_max_tries:
            log.error("fanout.job_failed", error=str(exc), **log_ctx)
            raise
        defer = settings.fanout_retry_delay * job_try
        log.warning("fanout.job_retrying", error=str(exc), defer=defer, **log_ctx)
        raise Retry(defer=defer) from exc

    log.info("fanout.job_done", created=created, **log_ctx)
    return created


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration."""

    functions = [run_fanout_job]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = redis_settings()
    queue_name = queue_name_for(
        settings.queue_prefix,
        settings.worker_priority if settings.worker_priority is not None else settings.default_priority,
    )
    max_tries = settings.fanout_max_tries
