"""Notification inbox endpoints."""
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.api.dependencies import CurrentUser, get_current_user
from producers_avenue.api.schemas import MarkReadRequest, NotificationResponse
from producers_avenue.core.notifications import notifier
from producers_avenue.database.connection import get_db

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", summary="List notifications")
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    rows = await notifier.list_for_user(db, user.id, unread_only=unread_only, limit=limit)
    return {
        "notifications": [
            NotificationResponse.model_validate(n).model_dump(mode="json") for n in rows
        ]
    }


@router.patch("", summary="Mark notifications read")
async def mark_read(
    request: MarkReadRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    updated = await notifier.mark_read(db, user.id, request.notification_ids)
    return {"success": True, "updated": updated}
