"""库存API专用的Pydantic模型和响应格式"""

from datetime import datetime
from pydantic import BaseModel, Field
from typing import List, Dict, Optional


# ==================== 请求模型 ====================

class StockItem(BaseModel):
    """SKU 及数量"""
    product_id: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="商品ID",
        examples=["prod_001"]
    )
    variant_id: Optional[str] = Field(
        None,
        max_length=64,
        description="变体ID，为空表示商品本身",
        examples=["var_001_m"]
    )
    quantity: int = Field(
        ...,
        gt=0,
        description="数量",
        examples=[2]
    )


class StockItemsRequest(BaseModel):
    """库存检查 / 扣减 / 归还请求"""
    items: List[StockItem] = Field(
        ...,
        min_length=1,
        max_length=100,
        description="商品行"
    )
    order_id: Optional[str] = Field(
        None,
        max_length=64,
        description="关联订单ID，写入审计日志",
        examples=["ORD202401010001"]
    )


class SkuRef(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=64, description="商品ID")
    variant_id: Optional[str] = Field(None, max_length=64, description="变体ID")


class BatchStockQueryRequest(BaseModel):
    """批量查询库存请求"""
    skus: List[SkuRef] = Field(
        ...,
        min_length=1,
        max_length=100,
        description="SKU 列表"
    )


class ReceiveStockRequest(BaseModel):
    """到货入库请求"""
    product_id: str = Field(..., min_length=1, max_length=64, description="商品ID")
    variant_id: Optional[str] = Field(None, max_length=64, description="变体ID")
    quantity: int = Field(
        ...,
        gt=0,
        description="入库数量",
        examples=[20]
    )


# ==================== 响应模型 ====================

class BaseResponse(BaseModel):
    """基础响应模型"""
    success: bool = Field(
        ...,
        description="请求是否成功"
    )
    message: Optional[str] = Field(
        None,
        description="响应消息"
    )


class StockCheckItem(BaseModel):
    product_id: str
    variant_id: Optional[str]
    available: bool
    current_stock: int


class StockCheckResponse(BaseResponse):
    """库存检查响应"""
    data: List[StockCheckItem]


class StockResponse(BaseResponse):
    """单个 SKU 库存响应"""
    product_id: str = Field(
        ...,
        description="商品ID"
    )
    variant_id: Optional[str] = Field(
        None,
        description="变体ID"
    )
    available_stock: int = Field(
        ...,
        ge=0,
        description="可用库存数量"
    )


class BatchStockResponse(BaseResponse):
    """批量库存查询响应"""
    data: Dict[str, int] = Field(
        ...,
        description="SKU（product_id:variant_id|base）到库存数量的映射"
    )


class OperationResponse(BaseResponse):
    """扣减 / 归还响应"""
    updated_items: List[StockItem] = Field(default_factory=list)
    restored_items: List[StockItem] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class ReceiveStockResponse(BaseResponse):
    """入库并处理预订单 / 到货提醒的结果"""
    previous_stock: int
    new_stock: int
    backorders_fulfilled: int = 0
    notifications_sent: int = 0
    processing_pending: bool = False
    task_id: Optional[str] = None


class LowStockItem(BaseModel):
    product_id: str
    variant_id: Optional[str]
    available_quantity: int
    expected_restock_date: Optional[datetime]


class LowStockResponse(BaseResponse):
    data: List[LowStockItem]


class AllocationItem(BaseModel):
    product_id: str
    variant_id: Optional[str]
    pending_orders: int
    pending_quantity: int
    available_stock: int


class AllocationSummaryResponse(BaseResponse):
    total_pending_quantity: int
    pending_allocation: List[AllocationItem]


class CeleryTaskResponse(BaseResponse):
    """Celery任务响应"""
    task_id: Optional[str] = Field(
        None,
        description="任务ID"
    )


class TaskStatusResponse(BaseModel):
    """任务状态响应"""
    task_id: str = Field(
        ...,
        description="任务ID"
    )
    status: str = Field(
        ...,
        description="任务状态描述"
    )
    state: str = Field(
        ...,
        description="任务状态码"
    )


class HealthCheckResponse(BaseModel):
    """健康检查响应"""
    status: str = Field(
        "healthy",
        description="服务状态"
    )
    service: str = Field(
        "backorder-service",
        description="服务名称"
    )
    version: str = Field(
        "1.0.0",
        description="服务版本"
    )
    database: bool = Field(
        True,
        description="数据库是否可用"
    )
    redis: bool = Field(
        True,
        description="Redis 是否可用"
    )


class APIInfoResponse(BaseModel):
    """API信息响应"""
    message: str = Field(
        "欢迎使用预订单服务",
        description="欢迎信息"
    )
    docs: str = Field(
        "/docs",
        description="API文档路径"
    )
    health: str = Field(
        "/health",
        description="健康检查路径"
    )
