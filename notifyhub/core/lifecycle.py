"""
Record lifecycle hooks.

Services persist subscribable and notifier records through `LifecycleHooks`
so that registered callbacks run around the flush:

    hooks = LifecycleHooks()
    hooks.on(Comment, LifecycleEvent.CREATE, notify_post_subscribers)
    comment = await hooks.create(session, Comment(...))

Callbacks are `async def callback(session, record) -> None`. Before-hooks run
prior to the flush, after-hooks once the row has been written (not committed).
`save` after-hooks run after both `create` and `update`.
"""

from __future__ import annotations

from collections import defaultdict
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

log = structlog.get_logger()

HookCallback = Callable[[AsyncSession, Any], Awaitable[None]]


class LifecycleEvent(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    SAVE = "save"
    DESTROY = "destroy"


class HookPhase(str, Enum):
    BEFORE = "before"
    AFTER = "after"


class LifecycleHooks:
    """Registry of lifecycle callbacks per model class, plus the persistence calls that fire them."""

    def __init__(self) -> None:
        # (model, event, phase) -> callbacks in registration order
        self._callbacks: dict[tuple[type, LifecycleEvent, HookPhase], list[HookCallback]] = defaultdict(list)

    def on(
        self,
        model: type,
        event: LifecycleEvent | str,
        callback: HookCallback,
        *,
        phase: HookPhase | str = HookPhase.AFTER,
    ) -> HookCallback:
        key = (model, LifecycleEvent(event), HookPhase(phase))
        self._callbacks[key].append(callback)
        return callback

    def callbacks_for(self, model: type, event: LifecycleEvent, phase: HookPhase) -> list[HookCallback]:
        # Most generic class first so base-class hooks run before subclass hooks.
        found: list[HookCallback] = []
        for cls in reversed(model.__mro__):
            found.extend(self._callbacks.get((cls, event, phase), ()))
        return found

    def has_callbacks(self, model: type, event: LifecycleEvent | str) -> bool:
        event = LifecycleEvent(event)
        return any(self.callbacks_for(model, event, phase) for phase in HookPhase)

    async def run(
        self,
        session: AsyncSession,
        record: Any,
        event: LifecycleEvent,
        phase: HookPhase,
    ) -> None:
        for callback in self.callbacks_for(type(record), event, phase):
            await callback(session, record)

    # ------------------------------------------------------------------
    # Persistence entry points
    # ------------------------------------------------------------------

    async def create(self, session: AsyncSession, record: Any) -> Any:
        await self.run(session, record, LifecycleEvent.CREATE, HookPhase.BEFORE)
        await self.run(session, record, LifecycleEvent.SAVE, HookPhase.BEFORE)
        session.add(record)
        await session.flush()
        await self.run(session, record, LifecycleEvent.CREATE, HookPhase.AFTER)
        await self.run(session, record, LifecycleEvent.SAVE, HookPhase.AFTER)
        return record

    async def update(self, session: AsyncSession, record: Any, **changes: Any) -> Any:
        for key, value in changes.items():
            if not hasattr(record, key):
                raise AttributeError(f"{type(record).__name__} has no attribute {key!r}")
            setattr(record, key, value)
        await self.run(session, record, LifecycleEvent.UPDATE, HookPhase.BEFORE)
        await self.run(session, record, LifecycleEvent.SAVE, HookPhase.BEFORE)
        session.add(record)
        await session.flush()
        await self.run(session, record, LifecycleEvent.UPDATE, HookPhase.AFTER)
        await self.run(session, record, LifecycleEvent.SAVE, HookPhase.AFTER)
        return record

    async def destroy(self, session: AsyncSession, record: Any) -> None:
        await self.run(session, record, LifecycleEvent.DESTROY, HookPhase.BEFORE)
        await session.delete(record)
        await session.flush()
        await self.run(session, record, LifecycleEvent.DESTROY, HookPhase.AFTER)
        log.debug("lifecycle.destroyed", type=type(record).__name__, id=str(getattr(record, "id", "")))
