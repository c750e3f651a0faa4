"""
Record references.

Subscriptions and updates point at resources and notifiers by a
(type name, id) pair rather than a foreign key, so any table can take part.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

DEFAULT_OWNER_FIELD = "user_id"

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def type_name(model: Any) -> str:
    """Stored type name for a model class or instance."""
    cls = model if isinstance(model, type) else type(model)
    return cls.__name__


def underscore(name: str) -> str:
    """CamelCase -> snake_case, e.g. ``BlogPost`` -> ``blog_post``."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def pluralize(name: str) -> str:
    """Plural of a snake_case name, e.g. ``reply`` -> ``replies``, ``match`` -> ``matches``."""
    if name.endswith("y") and len(name) > 1 and name[-2] not in "aeiou":
        return name[:-1] + "ies"
    if name.endswith(("s", "x", "z", "ch", "sh")):
        return name + "es"
    return name + "s"


def record_ref(record: Any) -> tuple[str, Optional[uuid.UUID]]:
    return type_name(record), getattr(record, "id", None)


def same_record(a: Any, b: Any) -> bool:
    if a is b:
        return True
    ref = record_ref(a)
    return ref[1] is not None and ref == record_ref(b)


def owner_id_of(record: Any) -> Optional[uuid.UUID]:
    """The owning user's id, or None when the record has no owner."""
    field = getattr(type(record), "__owner_field__", DEFAULT_OWNER_FIELD)
    return getattr(record, field, None)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a timestamp for comparison; naive values are treated as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
