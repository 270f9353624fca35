from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from . import models
import logging

logger = logging.getLogger(__name__)


async def create_notification(
    db: AsyncSession,
    user_id: int,
    type: str,
    title: str,
    message: str,
    data: dict | None = None,
) -> models.Notification:
    db_notification = models.Notification(
        user_id=user_id,
        type=type or "info",
        title=title,
        message=message,
        data=data or {},
    )
    db.add(db_notification)
    await db.commit()
    await db.refresh(db_notification)
    logger.info(f"Notification {db_notification.id} saved for user {user_id}")
    return db_notification


async def list_notifications_for_user(db: AsyncSession, user_id: int, limit: int | None = None) -> list[models.Notification]:
    """Newest first; ``limit=None`` returns them all."""
    stmt = (
        select(models.Notification)
        .where(models.Notification.user_id == user_id)
        .order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())
