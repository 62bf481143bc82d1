"""通知跟踪 API 路由"""

from fastapi import APIRouter, Depends, HTTPException, Path, Body
from typing import List
import logging

from app.core.dependencies import get_notification_service, require_admin
from app.core.exceptions import ValidationError
from app.routers.common import PASSTHROUGH, respond
from app.services.notification_service import NotificationService
from app.schemas.waitlist_api import (
    NotificationAnalyticsResponse,
    NotificationRecord,
    TrackEventRequest,
    TrackEventResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/notifications",
    tags=["通知"],
    responses={
        400: {"description": "无效的跟踪动作"},
        404: {"description": "通知不存在"},
        500: {"description": "服务器内部错误"}
    }
)


@router.post(
    "/track",
    response_model=TrackEventResponse,
    summary="记录通知事件",
    description="""记录邮件打开 / 链接点击 / 完成购买。

    - 每个事件只记录第一次，重复调用返回 updated=false
    - purchase 视为转化，对应订阅随之停用
    """
)
def track_event(
    request: TrackEventRequest = Body(...),
    service: NotificationService = Depends(get_notification_service)
):
    try:
        return respond(service.track(request.notification_id, request.action))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"记录通知事件失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/analytics", response_model=NotificationAnalyticsResponse, summary="通知效果统计（管理员）")
def analytics(
    service: NotificationService = Depends(get_notification_service),
    _admin = Depends(require_admin)
):
    try:
        return service.get_notification_analytics()
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"查询通知统计失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get(
    "/subscriptions/{subscription_id}",
    response_model=List[NotificationRecord],
    summary="订阅的通知记录（管理员）"
)
def subscription_notifications(
    subscription_id: int = Path(..., gt=0),
    service: NotificationService = Depends(get_notification_service),
    _admin = Depends(require_admin)
):
    try:
        return service.get_subscription_notifications(subscription_id)
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"查询通知记录失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
