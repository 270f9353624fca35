from typing import Any, List, Optional
import datetime

from common.schemas import ApiModel


class CreateOrderRequest(ApiModel):
    # All optional so a missing field becomes a 400 from the orchestrator, not a 422
    user_id: Optional[int] = None
    items: Optional[List[Any]] = None
    total_amount: Optional[float] = None


class OrderRead(ApiModel):
    id: int
    user_id: int
    items: List[Any]
    total_amount: float
    status: str
    payment_id: Optional[int] = None
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None
