"""到货提醒订阅与通知跟踪的请求 / 响应模型"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from app.schemas.inventory_api import BaseResponse


class SubscribeRequest(BaseModel):
    email: str = Field(..., max_length=255, description="订阅邮箱", examples=["kunde@example.com"])
    product_id: str = Field(..., min_length=1, max_length=64, description="商品ID")
    variant_id: Optional[str] = Field(None, max_length=64, description="变体ID")


class UnsubscribeRequest(SubscribeRequest):
    pass


class SubscribeResponse(BaseResponse):
    subscription_id: Optional[int] = None


class SubscriptionStatusResponse(BaseModel):
    subscribed: bool


class CustomerSubscription(BaseModel):
    id: int
    product_id: str
    variant_id: Optional[str]
    expected_restock_date: Optional[datetime]
    created_at: Optional[datetime]


class ProductSubscription(BaseModel):
    id: int
    email: str
    user_id: Optional[str]
    created_at: Optional[datetime]


class CountByProduct(BaseModel):
    product_id: str
    count: int


class CountByVariant(BaseModel):
    variant_id: str
    count: int


class WaitlistAnalyticsResponse(BaseModel):
    total_subscriptions: int
    active_subscriptions: int
    by_product: List[CountByProduct]
    by_variant: List[CountByVariant]
    notified_subscriptions: int
    converted_subscriptions: int
    conversion_rate: float


# ==================== 通知跟踪 ====================

class TrackEventRequest(BaseModel):
    notification_id: int = Field(..., gt=0, description="通知ID")
    action: str = Field(..., description="open / click / purchase", examples=["open"])


class TrackEventResponse(BaseResponse):
    updated: bool = False


class NotificationAnalyticsResponse(BaseModel):
    sent: int
    opened: int
    clicked: int
    converted: int
    failed: int
    open_rate: float
    click_rate: float
    conversion_rate: float
    by_type: Dict[str, int]


class NotificationRecord(BaseModel):
    id: int
    type: Literal["RESTOCK", "DELAY"]
    status: str
    product_id: str
    variant_id: Optional[str]
    sent_at: Optional[datetime]
    opened_at: Optional[datetime]
    clicked_at: Optional[datetime]
    purchased_at: Optional[datetime]
