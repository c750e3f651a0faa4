"""Subscription model: a user wants updates about a resource."""

from datetime import datetime
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import _utcnow


class Subscription(SQLModel, table=True):
    __tablename__ = "subscriptions"
    __table_args__ = (
        sa.Index("ix_subscriptions_resource", "resource_type", "resource_id", "user_id"),
    )

    user_id: uuid.UUID = Field(foreign_key="users.id", primary_key=True)
    resource_type: str = Field(primary_key=True, nullable=False)
    resource_id: uuid.UUID = Field(primary_key=True, nullable=False)
    created_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
