"""Update-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import UUID4, BaseModel, Field, model_validator


class UpdateCreate(BaseModel):
    """Validated fields of a new Update row; fan-out drops rows that fail validation."""

    subscriber_id: UUID
    resource_type: str = Field(min_length=1)
    resource_id: UUID
    notifier_type: str = Field(min_length=1)
    notifier_id: UUID
    notification: str = Field(min_length=1)


class UpdateRead(BaseModel):
    id: UUID4
    subscriber_id: UUID4
    resource_type: str
    resource_id: UUID
    notifier_type: str
    notifier_id: UUID
    notification: str
    created_at: datetime
    viewed_at: Optional[datetime] = None
    viewed: bool


class MarkViewedRequest(BaseModel):
    """Select which of the current user's unviewed updates to mark viewed.

    With no fields set every unviewed update is marked.
    """

    update_ids: Optional[List[UUID4]] = None
    resource_type: Optional[str] = None
    resource_id: Optional[UUID] = None

    @model_validator(mode="after")
    def _resource_pair(self) -> "MarkViewedRequest":
        if (self.resource_type is None) != (self.resource_id is None):
            raise ValueError("resource_type and resource_id must be given together")
        return self


class MarkViewedResponse(BaseModel):
    marked: int
