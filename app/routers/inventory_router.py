"""库存台账 API 路由"""

from fastapi import APIRouter, Depends, HTTPException, Query, Path, Body
from typing import Optional
import logging

from app.core.dependencies import (
    get_inventory_service,
    get_inventory_monitor,
    require_admin,
)
from app.routers.common import PASSTHROUGH, respond
from app.services.inventory_monitor import InventoryMonitor
from app.services.inventory_service import InventoryService
from app.schemas.inventory_api import (
    StockItemsRequest,
    BatchStockQueryRequest,
    ReceiveStockRequest,
    StockCheckResponse,
    StockResponse,
    BatchStockResponse,
    OperationResponse,
    ReceiveStockResponse,
    LowStockResponse,
    AllocationSummaryResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/inventory",
    tags=["库存管理"],
    responses={
        400: {"description": "请求参数错误"},
        404: {"description": "资源未找到"},
        409: {"description": "库存不足"},
        422: {"description": "请求验证失败"},
        429: {"description": "库存操作冲突"},
        500: {"description": "服务器内部错误"},
        503: {"description": "存储不可用"}
    }
)


def _items(request: StockItemsRequest) -> list:
    return [item.model_dump() for item in request.items]


@router.post(
    "/check",
    response_model=StockCheckResponse,
    summary="检查库存",
    description="逐行检查库存是否满足购买数量，只读。"
)
def check_stock(
    request: StockItemsRequest = Body(..., description="待检查的商品行"),
    service: InventoryService = Depends(get_inventory_service)
):
    try:
        data = service.check_stock(_items(request))
        return {"success": True, "data": data}
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"检查库存失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/reserve",
    response_model=OperationResponse,
    summary="结算扣减库存",
    description="""结算时扣减库存，整批成功或整批不动。

    **保护：**
    - SKU 级 Redlock 分布式锁，按 SKU 排序加锁
    - 台账行 SELECT ... FOR UPDATE
    - available_quantity >= 0 约束兜底
    """,
    responses={
        409: {
            "description": "库存不足",
            "content": {
                "application/json": {
                    "example": {
                        "success": False,
                        "error": "InsufficientStock",
                        "message": "库存不足: prod_001 需要 3，当前可用 1",
                        "product_id": "prod_001",
                        "variant_id": None,
                        "requested": 3,
                        "current_stock": 1
                    }
                }
            }
        }
    }
)
def reserve_stock(
    request: StockItemsRequest = Body(..., description="结算的商品行"),
    service: InventoryService = Depends(get_inventory_service)
):
    """结算扣减库存（防超卖核心接口）"""
    try:
        result = service.reserve_and_decrement(_items(request), order_id=request.order_id)
        return respond(result)
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"扣减库存失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/restore",
    response_model=OperationResponse,
    summary="归还库存",
    description="订单取消时归还库存，逐行尽力而为，失败行在 errors 中返回供对账。"
)
def restore_stock(
    request: StockItemsRequest = Body(..., description="归还的商品行"),
    service: InventoryService = Depends(get_inventory_service),
    _admin = Depends(require_admin)
):
    try:
        result = service.restore_inventory(_items(request), order_id=request.order_id)
        # 部分失败不视为请求失败
        return result
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"归还库存失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get(
    "/stock/{product_id}",
    response_model=StockResponse,
    summary="查询 SKU 库存",
    description="""查询 SKU 可用库存。

    **缓存策略：**
    - 首先查询Redis缓存
    - 缓存未命中则查询数据库
    - 台账每次变更后缓存失效
    """
)
def get_stock(
    product_id: str = Path(..., description="商品ID"),
    variant_id: Optional[str] = Query(None, description="变体ID"),
    service: InventoryService = Depends(get_inventory_service)
):
    try:
        stock = service.get_stock(product_id, variant_id)
        return {
            "success": True,
            "product_id": product_id,
            "variant_id": variant_id,
            "available_stock": stock
        }
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"查询库存失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/stock/batch",
    response_model=BatchStockResponse,
    summary="批量查询库存",
    description="单次最多 100 个 SKU，Redis mget + 数据库 in 查询。"
)
def batch_get_stocks(
    request: BatchStockQueryRequest = Body(..., description="批量查询请求参数"),
    service: InventoryService = Depends(get_inventory_service)
):
    try:
        stocks = service.batch_get_stocks([(sku.product_id, sku.variant_id) for sku in request.skus])
        return BatchStockResponse(success=True, data=stocks)
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"批量查询库存失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/receive",
    response_model=ReceiveStockResponse,
    summary="到货入库",
    description="管理员登记到货：入库后立即按优先级履约预订单，余量通知等待名单。"
)
def receive_stock(
    request: ReceiveStockRequest = Body(...),
    monitor: InventoryMonitor = Depends(get_inventory_monitor),
    admin = Depends(require_admin)
):
    try:
        result = monitor.receive_and_process(
            request.product_id, request.variant_id, request.quantity,
            operator=admin.user_id or "admin"
        )
        return respond(result)
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"到货入库失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/low-stock", response_model=LowStockResponse, summary="低库存预警")
def low_stock(
    threshold: int = Query(5, ge=0, description="预警阈值"),
    service: InventoryService = Depends(get_inventory_service),
    _admin = Depends(require_admin)
):
    try:
        return {"success": True, "data": service.get_low_stock_alerts(threshold)}
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"查询低库存失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get(
    "/backorder-allocation",
    response_model=AllocationSummaryResponse,
    summary="预订单待分配汇总"
)
def backorder_allocation(
    service: InventoryService = Depends(get_inventory_service),
    _admin = Depends(require_admin)
):
    try:
        summary = service.get_backorder_allocation_summary()
        return {"success": True, **summary}
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"查询预订单分配汇总失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
