from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.exc import IntegrityError
from . import models
import logging

logger = logging.getLogger(__name__)


async def get_payment(db: AsyncSession, payment_id: int) -> models.Payment | None:
    result = await db.execute(select(models.Payment).filter(models.Payment.id == payment_id))
    return result.scalars().first()


async def get_payment_for_order(db: AsyncSession, order_id: int) -> models.Payment | None:
    result = await db.execute(select(models.Payment).filter(models.Payment.order_id == order_id))
    return result.scalars().first()


async def create_payment(
    db: AsyncSession,
    order_id: int,
    user_id: int,
    amount: float,
    payment_method: str,
) -> tuple[models.Payment, bool]:
    """
    Records a completed payment for an order.
    Returns the payment and whether it was created now; an order that already
    has a payment gets the existing record back instead of a second row.
    """
    existing = await get_payment_for_order(db, order_id)
    if existing:
        return existing, False

    db_payment = models.Payment(
        order_id=order_id,
        user_id=user_id,
        amount=amount,
        payment_method=payment_method,
        status=models.STATUS_COMPLETED,
    )
    db.add(db_payment)
    try:
        await db.commit()
    except IntegrityError:
        # Another consumer inserted the same order's payment in between
        await db.rollback()
        existing = await get_payment_for_order(db, order_id)
        if existing is None:
            raise
        return existing, False
    await db.refresh(db_payment)
    logger.info(f"Recorded payment {db_payment.id} for order {order_id} ({amount:.2f} via {payment_method})")
    return db_payment, True
