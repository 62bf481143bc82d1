"""预订单 API 的请求与响应模型"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.inventory_api import BaseResponse


# ==================== 请求模型 ====================

class BackorderItem(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=64, description="商品ID")
    variant_id: Optional[str] = Field(None, max_length=64, description="变体ID")
    quantity: int = Field(..., gt=0, description="数量", examples=[1])
    size: str = Field(..., min_length=1, max_length=32, description="尺码", examples=["M"])
    color: Optional[str] = Field(None, max_length=32, description="颜色")
    price: Decimal = Field(..., gt=0, description="单价", examples=["49.90"])


class CreateBackorderRequest(BaseModel):
    """创建预订单请求，user_id 取自调用方身份"""
    items: List[BackorderItem] = Field(..., min_length=1, description="订单行")
    total_amount: Decimal = Field(..., gt=0, description="订单总额")
    currency: str = Field(..., min_length=3, max_length=3, description="币种", examples=["EUR"])
    shipping_address: str = Field(..., min_length=1, max_length=255)
    shipping_city: str = Field(..., min_length=1, max_length=128)
    shipping_postal: str = Field(..., min_length=1, max_length=32)
    customer_email: Optional[str] = Field(None, max_length=255, description="履约通知邮箱")
    payment_reference: Optional[str] = Field(
        None,
        max_length=128,
        description="已完成支付的支付单号，同一单号重复提交返回同一订单",
        examples=["PAYPAL-5O190127TN364715T"]
    )
    expected_fulfillment_date: Optional[datetime] = Field(None, description="预计履约时间")


class CancelBackorderRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255, description="取消原因")


class FulfillBackordersRequest(BaseModel):
    """管理员按新到库存履约预订单"""
    product_id: str = Field(..., min_length=1, max_length=64)
    variant_id: Optional[str] = Field(None, max_length=64)
    available_quantity: int = Field(..., gt=0, description="可用于履约的数量")


class ReprioritizeRequest(BaseModel):
    priority: int = Field(..., ge=0, description="履约排队优先级，数值越小越优先")


# ==================== 响应模型 ====================

class CreateBackorderResponse(BaseResponse):
    order_id: int = Field(..., description="订单ID")


class BackorderLine(BaseModel):
    id: int
    product_id: str
    variant_id: Optional[str]
    quantity: int
    size: str
    color: Optional[str]
    price: Decimal
    fulfilled: bool


class BackorderDetail(BaseModel):
    id: int
    user_id: str
    order_type: str
    status: str
    total_amount: Decimal
    currency: str
    customer_email: Optional[str]
    expected_fulfillment_date: Optional[datetime]
    backorder_priority: Optional[int]
    sequence_number: Optional[int]
    created_at: Optional[datetime]
    items: List[BackorderLine]


class BackorderListResponse(BaseModel):
    """分页的待履约预订单，按履约顺序"""
    items: List[BackorderDetail]
    total: int
    page: int
    limit: int


class FulfillBackordersResponse(BaseResponse):
    fulfilled_orders: List[int]
    completed_orders: List[int] = Field(default_factory=list)
    skipped_orders: List[int] = Field(default_factory=list)
    remaining_quantity: int
    ledger_shortfall: int = 0
    errors: List[dict] = Field(default_factory=list)


class CancelBackorderResponse(BaseResponse):
    inventory_errors: List[str] = Field(default_factory=list)


class ReprioritizeResponse(BaseResponse):
    previous_priority: Optional[int] = None
