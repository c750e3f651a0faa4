"""Update model: one notification produced by fan-out (append-only apart from viewed_at)."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, _utcnow


class Update(UUIDMixin, SQLModel, table=True):
    __tablename__ = "updates"
    __table_args__ = (
        sa.Index("ix_updates_resource", "resource_type", "resource_id"),
        sa.Index("ix_updates_notifier", "notifier_type", "notifier_id"),
        sa.Index("ix_updates_subscriber_viewed", "subscriber_id", "viewed_at"),
    )

    subscriber_id: uuid.UUID = Field(foreign_key="users.id", nullable=False)
    resource_type: str = Field(nullable=False)
    resource_id: uuid.UUID = Field(nullable=False)
    notifier_type: str = Field(nullable=False)
    notifier_id: uuid.UUID = Field(nullable=False)
    notification: str = Field(nullable=False, default="create")
    created_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
    viewed_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))

    @property
    def viewed(self) -> bool:
        return self.viewed_at is not None
