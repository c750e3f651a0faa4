"""
Fan-out job queue.

The engine only needs "enqueue with priority". Production uses ARQ: each
priority maps to its own queue name, and deployments run more workers on
the lower-numbered (more urgent) queues.
"""

from __future__ import annotations

import uuid
from typing import Protocol

import structlog
from arq.connections import ArqRedis
from pydantic import BaseModel

log = structlog.get_logger()

FANOUT_JOB_FUNCTION = "run_fanout_job"


class FanOutJob(BaseModel):
    """Unit of work carried from the dispatcher to a fan-out worker."""

    notifier_type: str
    notifier_id: uuid.UUID
    association: str
    priority: int = 1
    method: str = "notify_subscribers_of"


class JobQueue(Protocol):
    async def enqueue(self, job: FanOutJob, priority: int) -> None: ...


def queue_name_for(prefix: str, priority: int) -> str:
    return f"{prefix}:{priority}"


class ArqJobQueue:
    """Enqueue fan-out jobs onto per-priority ARQ queues."""

    def __init__(self, pool: ArqRedis, prefix: str) -> None:
        self._pool = pool
        self._prefix = prefix

    async def enqueue(self, job: FanOutJob, priority: int) -> None:
        queue_name = queue_name_for(self._prefix, priority)
        queued = await self._pool.enqueue_job(
            FANOUT_JOB_FUNCTION,
            job.model_dump(mode="json"),
            _queue_name=queue_name,
        )
        log.debug(
            "queue.enqueued",
            queue=queue_name,
            job_id=queued.job_id if queued else None,
            notifier_type=job.notifier_type,
            notifier_id=str(job.notifier_id),
        )
