from typing import Any, Dict, Optional
import datetime

from common.schemas import ApiModel


class CreateNotificationRequest(ApiModel):
    user_id: Optional[int] = None
    type: Optional[str] = None
    title: Optional[str] = None
    message: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class NotificationRead(ApiModel):
    id: int
    user_id: int
    type: str
    title: str
    message: str
    data: Dict[str, Any]
    created_at: Optional[datetime.datetime] = None
