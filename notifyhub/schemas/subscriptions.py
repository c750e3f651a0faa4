"""Subscription-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import UUID4, BaseModel, Field


class SubscriptionCreate(BaseModel):
    resource_type: str = Field(min_length=1)
    resource_id: UUID


class SubscriptionRead(BaseModel):
    user_id: UUID4
    resource_type: str
    resource_id: UUID
    created_at: datetime
