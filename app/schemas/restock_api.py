"""补货计划与到货处理的请求 / 响应模型"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.inventory_api import BaseResponse


class SetRestockDateRequest(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=64)
    variant_id: Optional[str] = Field(None, max_length=64)
    expected_date: datetime = Field(..., description="预计到货时间，必须在未来")
    notes: Optional[str] = Field(None, max_length=500)


class BulkRestockRequest(BaseModel):
    updates: List[SetRestockDateRequest] = Field(..., min_length=1, max_length=500)


class TriggerRestockRequest(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=64)
    variant_id: Optional[str] = Field(None, max_length=64)
    new_stock: Optional[int] = Field(
        None,
        ge=0,
        description="本次到货数量，为空时以台账当前可用量为准"
    )


class SetRestockDateResponse(BaseResponse):
    schedule_id: Optional[int] = None


class BulkRestockResponse(BaseResponse):
    updated_count: int
    errors: List[dict] = Field(default_factory=list)


class RestockDateResponse(BaseModel):
    product_id: str
    variant_id: Optional[str]
    expected_date: Optional[datetime]


class UpcomingRestock(BaseModel):
    schedule_id: int
    product_id: str
    variant_id: Optional[str]
    expected_date: datetime
    waitlist_count: int
    backorder_count: int
    notes: Optional[str]


class RestockHistoryEntry(BaseModel):
    schedule_id: int
    status: str
    expected_date: datetime
    actual_date: Optional[datetime]
    notes: Optional[str]
    created_at: Optional[datetime]


class RestockProcessingResponse(BaseResponse):
    backorders_fulfilled: int
    notifications_sent: int
    fulfilled_orders: List[int] = Field(default_factory=list)
    remaining_quantity: int = 0
    errors: List[dict] = Field(default_factory=list)


class ExpiredSweepResponse(BaseResponse):
    expired_count: int
    notifications_sent: int


class MonitoringStatsResponse(BaseModel):
    pending_schedules: int
    expired_schedules: int
    fulfilled_schedules: int
    pending_backorders: int
    backorders_fulfilled_24h: int
    notifications_sent_24h: int
    active_subscriptions: int
