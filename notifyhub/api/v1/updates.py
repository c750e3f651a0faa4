"""
Update endpoints: the current user's notifications and marking them viewed.
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from notifyhub.core.auth import get_current_user
from notifyhub.core.database import get_session
from notifyhub.models.user import User
from notifyhub.schemas.updates import MarkViewedRequest, MarkViewedResponse, UpdateRead
from notifyhub.services import updates as update_service

router = APIRouter()


@router.get("/", response_model=List[UpdateRead])
async def list_updates(
    unviewed: bool = False,
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """List the current user's updates, newest first."""
    updates = await update_service.list_updates(session, user.id, unviewed_only=unviewed, limit=limit)
    return [UpdateRead.model_validate(u, from_attributes=True) for u in updates]


@router.post("/viewed", response_model=MarkViewedResponse)
async def mark_updates_viewed(
    body: MarkViewedRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Mark unviewed updates viewed. The next event from the same notifier will notify again."""
    marked = await update_service.mark_viewed(
        session,
        user.id,
        update_ids=body.update_ids,
        resource_type=body.resource_type,
        resource_id=body.resource_id,
    )
    return MarkViewedResponse(marked=marked)
