"""预订单 API 路由"""

from fastapi import APIRouter, Depends, HTTPException, Query, Path, Body
from typing import List, Optional
import logging

from app.core.dependencies import (
    Principal,
    get_backorder_service,
    require_admin,
    require_user,
)
from app.routers.common import PASSTHROUGH, ensure_owner, respond
from app.services.backorder_service import BackorderService
from app.schemas.backorder_api import (
    BackorderDetail,
    BackorderListResponse,
    CancelBackorderRequest,
    CancelBackorderResponse,
    CreateBackorderRequest,
    CreateBackorderResponse,
    FulfillBackordersRequest,
    FulfillBackordersResponse,
    ReprioritizeRequest,
    ReprioritizeResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/backorders",
    tags=["预订单"],
    responses={
        401: {"description": "未登录"},
        403: {"description": "无权限"},
        404: {"description": "预订单不存在"},
        409: {"description": "状态不允许该操作"},
        422: {"description": "请求验证失败"},
        500: {"description": "服务器内部错误"}
    }
)


@router.post(
    "",
    response_model=CreateBackorderResponse,
    status_code=201,
    summary="创建预订单",
    description="""为缺货商品下预订单（支付已完成）。

    - 不占用库存，到货后按排队优先级履约
    - 同一 payment_reference 重复提交返回同一订单
    - 商品有足够现货时拒绝（应走正常下单）
    """
)
def create_backorder(
    request: CreateBackorderRequest = Body(...),
    service: BackorderService = Depends(get_backorder_service),
    principal: Principal = Depends(require_user)
):
    try:
        data = request.model_dump()
        data["user_id"] = principal.user_id
        return respond(service.create_backorder(data))
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"创建预订单失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/mine", response_model=List[BackorderDetail], summary="我的预订单")
def my_backorders(
    service: BackorderService = Depends(get_backorder_service),
    principal: Principal = Depends(require_user)
):
    try:
        return service.get_customer_backorders(principal.user_id)
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"查询客户预订单失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get(
    "/admin/pending",
    response_model=BackorderListResponse,
    summary="待履约预订单（管理员）",
    description="按履约顺序分页返回；指定 product_id 时只返回该 SKU 仍有未履约行的订单。"
)
def list_pending(
    product_id: Optional[str] = Query(None, description="商品ID"),
    variant_id: Optional[str] = Query(None, description="变体ID"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    service: BackorderService = Depends(get_backorder_service),
    _admin = Depends(require_admin)
):
    try:
        return service.list_pending_backorders(product_id, variant_id, page, limit)
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"查询待履约预订单失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/admin/fulfill",
    response_model=FulfillBackordersResponse,
    summary="履约预订单（管理员）",
    description="用可用库存按优先级履约该 SKU 的预订单，订单行不做部分履约。"
)
def fulfill_backorders(
    request: FulfillBackordersRequest = Body(...),
    service: BackorderService = Depends(get_backorder_service),
    _admin = Depends(require_admin)
):
    try:
        result = service.fulfill_backorders(request.product_id, request.variant_id, request.available_quantity)
        return respond(result)
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"履约预订单失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{order_id}", response_model=BackorderDetail, summary="预订单详情")
def get_backorder(
    order_id: int = Path(..., gt=0),
    service: BackorderService = Depends(get_backorder_service),
    principal: Principal = Depends(require_user)
):
    try:
        order = service.get_backorder_status(order_id)
        if order is None:
            raise HTTPException(status_code=404, detail="预订单不存在")
        ensure_owner(principal, order["user_id"])
        return order
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"查询预订单失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/{order_id}/cancel",
    response_model=CancelBackorderResponse,
    summary="取消预订单",
    description="只允许 PENDING / PROCESSING；已履约行的库存尽力归还，归还失败不阻塞取消。"
)
def cancel_backorder(
    order_id: int = Path(..., gt=0),
    request: Optional[CancelBackorderRequest] = Body(None),
    service: BackorderService = Depends(get_backorder_service),
    principal: Principal = Depends(require_user)
):
    try:
        order = service.get_backorder_status(order_id)
        if order is None:
            raise HTTPException(status_code=404, detail="预订单不存在")
        ensure_owner(principal, order["user_id"])
        return respond(service.cancel_backorder(order_id, request.reason if request else None))
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"取消预订单失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.put(
    "/{order_id}/priority",
    response_model=ReprioritizeResponse,
    summary="调整履约优先级（管理员）",
    description="只影响排队顺序，不改变预计履约时间和创建序号。"
)
def reprioritize(
    order_id: int = Path(..., gt=0),
    request: ReprioritizeRequest = Body(...),
    service: BackorderService = Depends(get_backorder_service),
    _admin = Depends(require_admin)
):
    try:
        return respond(service.reprioritize_backorder(order_id, request.priority))
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"调整优先级失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
