from typing import Optional
import datetime

from common.schemas import ApiModel


class CreatePaymentRequest(ApiModel):
    order_id: Optional[int] = None
    user_id: Optional[int] = None
    amount: Optional[float] = None
    payment_method: Optional[str] = None


class PaymentRead(ApiModel):
    id: int
    order_id: int
    user_id: int
    amount: float
    payment_method: str
    status: str
    created_at: Optional[datetime.datetime] = None
