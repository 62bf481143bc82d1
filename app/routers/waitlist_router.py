"""到货提醒订阅 API 路由"""

from fastapi import APIRouter, Depends, HTTPException, Query, Path, Body
from typing import List, Optional
import logging

from app.core.dependencies import get_waitlist_service, require_admin
from app.routers.common import PASSTHROUGH, respond
from app.services.waitlist_service import WaitlistService
from app.schemas.inventory_api import BaseResponse
from app.schemas.waitlist_api import (
    CustomerSubscription,
    ProductSubscription,
    SubscribeRequest,
    SubscribeResponse,
    SubscriptionStatusResponse,
    UnsubscribeRequest,
    WaitlistAnalyticsResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/waitlist",
    tags=["到货提醒"],
    responses={
        404: {"description": "商品或订阅不存在"},
        409: {"description": "已订阅"},
        422: {"description": "请求验证失败"},
        500: {"description": "服务器内部错误"}
    }
)


@router.post(
    "/subscribe",
    response_model=SubscribeResponse,
    status_code=201,
    summary="订阅到货提醒",
    description="同一邮箱对同一 SKU 只能有一个有效订阅，重复订阅返回 409 AlreadySubscribed。"
)
def subscribe(
    request: SubscribeRequest = Body(...),
    service: WaitlistService = Depends(get_waitlist_service)
):
    try:
        return respond(service.subscribe(request.model_dump()))
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"订阅到货提醒失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/unsubscribe", response_model=BaseResponse, summary="取消订阅")
def unsubscribe(
    request: UnsubscribeRequest = Body(...),
    service: WaitlistService = Depends(get_waitlist_service)
):
    try:
        return respond(service.unsubscribe(request.email, request.product_id, request.variant_id))
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"取消订阅失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get(
    "/unsubscribe",
    response_model=BaseResponse,
    summary="取消订阅（邮件链接）",
    description="邮件中的退订链接，参数与邮件模板一致。"
)
def unsubscribe_link(
    email: str = Query(...),
    product_id: str = Query(..., alias="productId"),
    variant_id: Optional[str] = Query(None, alias="variantId"),
    service: WaitlistService = Depends(get_waitlist_service)
):
    try:
        return respond(service.unsubscribe(email, product_id, variant_id or None))
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"取消订阅失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/status", response_model=SubscriptionStatusResponse, summary="是否已订阅")
def subscription_status(
    email: str = Query(...),
    product_id: str = Query(...),
    variant_id: Optional[str] = Query(None),
    service: WaitlistService = Depends(get_waitlist_service)
):
    try:
        return {"subscribed": service.is_subscribed(email, product_id, variant_id)}
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"查询订阅状态失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/subscriptions", response_model=List[CustomerSubscription], summary="客户的有效订阅")
def customer_subscriptions(
    email: str = Query(..., description="订阅邮箱"),
    service: WaitlistService = Depends(get_waitlist_service)
):
    try:
        return service.get_customer_subscriptions(email)
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"查询客户订阅失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get(
    "/products/{product_id}/subscriptions",
    response_model=List[ProductSubscription],
    summary="SKU 的订阅者（管理员）"
)
def product_subscriptions(
    product_id: str = Path(...),
    variant_id: Optional[str] = Query(None),
    service: WaitlistService = Depends(get_waitlist_service),
    _admin = Depends(require_admin)
):
    try:
        return [
            {"id": s.id, "email": s.email, "user_id": s.user_id, "created_at": s.created_at}
            for s in service.get_product_subscriptions(product_id, variant_id)
        ]
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"查询商品订阅失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/analytics", response_model=WaitlistAnalyticsResponse, summary="订阅统计（管理员）")
def analytics(
    service: WaitlistService = Depends(get_waitlist_service),
    _admin = Depends(require_admin)
):
    try:
        return service.get_analytics()
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"查询订阅统计失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
