"""
Association descriptors: how a notifier reaches the record(s) it notifies about.

A descriptor is computed once per rule from the SQLAlchemy mapper:

- ``collection``: a one-to-many / many-to-many relationship. Walked in
  keyset-paginated batches so arbitrarily large collections never load at once.
- ``singular``: a many-to-one / one-to-one relationship (zero or one target).
- ``self``: the notifier is its own subscribable.
- ``polymorphic``: either a ``<name>_type`` / ``<name>_id`` column pair naming
  any registered subscribable, or a method ``name(session)`` returning a
  record, a list/tuple/set/generator of records, an async iterable, or None
  (sync or async).
"""

from __future__ import annotations

import inspect
from contextlib import aclosing
from enum import Enum
from typing import Any, AsyncIterator, Callable, Optional

from sqlalchemy import inspect as sa_inspect
from sqlalchemy import select
from sqlalchemy.exc import ArgumentError, InvalidRequestError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import with_parent

from notifyhub.subscribers.errors import UnknownAssociationError, UnknownTypeError

SELF = "self"
DEFAULT_BATCH_SIZE = 500

TypeResolver = Callable[[str], type]


class AssociationKind(str, Enum):
    COLLECTION = "collection"
    SINGULAR = "singular"
    SELF = "self"
    POLYMORPHIC = "polymorphic"


class AssociationDescriptor:
    """Resolved shape of one association on one model."""

    __slots__ = ("model", "name", "kind", "target")

    def __init__(
        self,
        model: type,
        name: str,
        kind: AssociationKind,
        target: Optional[type] = None,
    ):
        self.model = model
        self.name = name
        self.kind = kind
        self.target = target  # None for polymorphic associations

    def __repr__(self) -> str:
        target = self.target.__name__ if self.target else None
        return f"AssociationDescriptor({self.model.__name__}.{self.name}, {self.kind.value}, target={target})"


def _has_reference_columns(mapper: Any, name: str) -> bool:
    columns = mapper.columns
    return f"{name}_type" in columns and f"{name}_id" in columns


def describe_association(model: type, name: str) -> AssociationDescriptor:
    """Inspect `model` and describe association `name`.

    Raises UnknownAssociationError when the mapper can't be configured yet
    (e.g. a relationship target isn't defined) or the name doesn't resolve.
    """
    if name == SELF:
        return AssociationDescriptor(model, name, AssociationKind.SELF, model)

    try:
        mapper = sa_inspect(model)
        relationships = mapper.relationships
    except (InvalidRequestError, ArgumentError) as exc:
        raise UnknownAssociationError(model, name, str(exc)) from exc

    if name in relationships:
        rel = relationships[name]
        kind = AssociationKind.COLLECTION if rel.uselist else AssociationKind.SINGULAR
        return AssociationDescriptor(model, name, kind, rel.mapper.class_)

    if _has_reference_columns(mapper, name):
        return AssociationDescriptor(model, name, AssociationKind.POLYMORPHIC)

    if name in mapper.attrs:
        raise UnknownAssociationError(model, name, "mapped column, not a relationship")

    attr = inspect.getattr_static(model, name, None)
    if attr is not None and (callable(attr) or isinstance(attr, (property, staticmethod, classmethod))):
        return AssociationDescriptor(model, name, AssociationKind.POLYMORPHIC)

    raise UnknownAssociationError(model, name)


async def iter_targets(
    session: AsyncSession,
    record: Any,
    descriptor: AssociationDescriptor,
    *,
    resolve_type: Optional[TypeResolver] = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> AsyncIterator[Any]:
    """Yield the record(s) `descriptor` points at from `record`.

    Singular and polymorphic associations with no target yield a single None.
    """
    if descriptor.kind is AssociationKind.SELF:
        yield record
    elif descriptor.kind is AssociationKind.COLLECTION:
        async for target in _find_each_related(session, record, descriptor, batch_size):
            yield target
    elif descriptor.kind is AssociationKind.SINGULAR:
        yield await _load_related(session, record, descriptor)
    else:
        async for target in _resolve_polymorphic(session, record, descriptor, resolve_type):
            yield target


async def resolve_one(
    session: AsyncSession,
    record: Any,
    descriptor: AssociationDescriptor,
    *,
    resolve_type: Optional[TypeResolver] = None,
) -> Any:
    """First target of the association, or None."""
    targets = iter_targets(session, record, descriptor, resolve_type=resolve_type, batch_size=1)
    async with aclosing(targets):
        async for target in targets:
            return target
    return None


async def _load_related(session: AsyncSession, record: Any, descriptor: AssociationDescriptor) -> Any:
    criterion = with_parent(record, getattr(descriptor.model, descriptor.name))
    result = await session.execute(select(descriptor.target).where(criterion).limit(1))
    return result.scalars().first()


async def _find_each_related(
    session: AsyncSession,
    record: Any,
    descriptor: AssociationDescriptor,
    batch_size: int,
) -> AsyncIterator[Any]:
    target = descriptor.target
    target_mapper = sa_inspect(target)
    pk = target_mapper.primary_key[0]
    pk_attr = target_mapper.get_property_by_column(pk).key
    criterion = with_parent(record, getattr(descriptor.model, descriptor.name))

    last_key = None
    while True:
        stmt = select(target).where(criterion)
        if last_key is not None:
            stmt = stmt.where(pk > last_key)
        stmt = stmt.order_by(pk).limit(batch_size)

        result = await session.execute(stmt)
        batch = result.scalars().all()
        for item in batch:
            yield item

        if len(batch) < batch_size:
            return
        last_key = getattr(batch[-1], pk_attr)


async def _resolve_polymorphic(
    session: AsyncSession,
    record: Any,
    descriptor: AssociationDescriptor,
    resolve_type: Optional[TypeResolver],
) -> AsyncIterator[Any]:
    name = descriptor.name

    if _has_reference_columns(sa_inspect(descriptor.model), name):
        target_type = getattr(record, f"{name}_type")
        target_id = getattr(record, f"{name}_id")
        if not target_type or target_id is None:
            yield None
            return
        if resolve_type is None:
            raise UnknownTypeError(f"cannot resolve polymorphic type {target_type!r} without a registry")
        yield await session.get(resolve_type(target_type), target_id)
        return

    value = getattr(record, name)
    if callable(value):
        value = value(session)
    if inspect.isawaitable(value):
        value = await value

    if value is None:
        yield None
    elif hasattr(value, "__aiter__"):
        async for item in value:
            yield item
    elif isinstance(value, (list, tuple, set, frozenset)) or inspect.isgenerator(value):
        for item in value:
            yield item
    else:
        yield value
