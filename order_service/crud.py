from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import update
from sqlalchemy.sql import func
from . import models
import logging

logger = logging.getLogger(__name__)


async def create_order(db: AsyncSession, user_id: int, items: list, total_amount: float) -> models.Order:
    db_order = models.Order(
        user_id=user_id,
        items=items,
        total_amount=total_amount,
        status=models.STATUS_PENDING,
    )
    db.add(db_order)
    await db.commit()
    await db.refresh(db_order)
    logger.info(f"Created order {db_order.id} for user {user_id} (total {total_amount:.2f})")
    return db_order


async def get_order(db: AsyncSession, order_id: int) -> models.Order | None:
    result = await db.execute(select(models.Order).filter(models.Order.id == order_id))
    return result.scalars().first()


async def list_orders_for_user(db: AsyncSession, user_id: int) -> list[models.Order]:
    stmt = (
        select(models.Order)
        .where(models.Order.user_id == user_id)
        .order_by(models.Order.created_at.desc(), models.Order.id.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def mark_order_paid(db: AsyncSession, order_id: int, payment_id: int) -> tuple[models.Order | None, bool]:
    """
    Sets the order to paid with the given payment.
    Returns the order (None if unknown) and whether this call changed it;
    repeating the call with the same values changes nothing.
    """
    db_order = await get_order(db, order_id)
    if db_order is None:
        return None, False
    changed = db_order.status != models.STATUS_PAID or db_order.payment_id != payment_id
    await db.execute(
        update(models.Order)
        .where(models.Order.id == order_id)
        .values(status=models.STATUS_PAID, payment_id=payment_id, updated_at=func.now())
    )
    await db.commit()
    await db.refresh(db_order)
    return db_order, changed
