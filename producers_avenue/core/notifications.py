"""
Notification emitter.

Notifications are fire-and-forget: a failed insert is logged and
swallowed so it never fails the operation that triggered it.
"""
from typing import List, Optional, Sequence

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.database.models import Notification
from producers_avenue.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class NotificationEmitter:
    """Writes and reads user-facing notification records."""

    async def emit(
        self,
        db: AsyncSession,
        user_id: str,
        type: str,
        title: str,
        message: str,
        link: Optional[str] = None,
    ) -> Optional[Notification]:
        """
        Insert a notification inside a savepoint.

        Returns:
            Optional[Notification]: The stored row, or None if the insert failed
        """
        if not user_id:
            logger.warning("notification_skipped_no_recipient", type=type)
            return None

        try:
            async with db.begin_nested():
                notification = Notification(
                    user_id=user_id,
                    type=type,
                    title=title,
                    message=message,
                    link=link,
                    read=False,
                )
                db.add(notification)
            return notification
        except SQLAlchemyError as e:
            metrics.record_notification_failure(type)
            logger.error(
                "notification_emit_failed",
                user_id=user_id,
                type=type,
                error=str(e),
            )
            return None

    async def list_for_user(
        self,
        db: AsyncSession,
        user_id: str,
        unread_only: bool = False,
        limit: int = 50,
    ) -> List[Notification]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc()).limit(limit)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def mark_read(
        self,
        db: AsyncSession,
        user_id: str,
        notification_ids: Optional[Sequence[str]] = None,
    ) -> int:
        """
        Mark the caller's unread notifications as read.

        Only rows with ``read = false`` are touched, so the flag never
        moves back. With no ids, every unread notification is marked.

        Returns:
            int: Number of notifications marked
        """
        stmt = (
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .values(read=True)
        )
        if notification_ids:
            stmt = stmt.where(Notification.id.in_(list(notification_ids)))
        result = await db.execute(stmt)
        logger.info("notifications_marked_read", user_id=user_id, count=result.rowcount)
        return result.rowcount


notifier = NotificationEmitter()
