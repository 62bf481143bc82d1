"""补货计划与到货处理 API 路由（管理员）"""

from fastapi import APIRouter, Depends, HTTPException, Query, Path, Body
from typing import List, Optional
import logging

from app.core.dependencies import (
    get_inventory_monitor,
    get_restock_service,
    require_admin,
)
from app.routers.common import PASSTHROUGH, respond
from app.services.inventory_monitor import InventoryMonitor
from app.services.restock_service import RestockService
from app.schemas.inventory_api import CeleryTaskResponse, TaskStatusResponse
from app.schemas.restock_api import (
    BulkRestockRequest,
    BulkRestockResponse,
    ExpiredSweepResponse,
    MonitoringStatsResponse,
    RestockDateResponse,
    RestockHistoryEntry,
    RestockProcessingResponse,
    SetRestockDateRequest,
    SetRestockDateResponse,
    TriggerRestockRequest,
    UpcomingRestock,
)
from tasks.inventory_tasks import process_expired_restock_dates as celery_sweep_task

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/admin/restock",
    tags=["补货管理"],
    dependencies=[Depends(require_admin)],
    responses={
        403: {"description": "需要管理员权限"},
        422: {"description": "请求验证失败"},
        429: {"description": "库存操作冲突"},
        500: {"description": "服务器内部错误"}
    }
)


@router.post("/dates", response_model=SetRestockDateResponse, summary="设置预计到货时间")
def set_restock_date(
    request: SetRestockDateRequest = Body(...),
    service: RestockService = Depends(get_restock_service)
):
    try:
        return respond(service.set_restock_date(
            request.product_id, request.variant_id, request.expected_date, request.notes
        ))
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"设置预计到货时间失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/dates/bulk", response_model=BulkRestockResponse, summary="批量设置预计到货时间")
def bulk_set_restock_dates(
    request: BulkRestockRequest = Body(...),
    service: RestockService = Depends(get_restock_service)
):
    try:
        return service.bulk_update_restock_dates([u.model_dump() for u in request.updates])
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"批量设置预计到货时间失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/dates/upcoming", response_model=List[UpcomingRestock], summary="即将到货")
def upcoming_restocks(service: RestockService = Depends(get_restock_service)):
    try:
        return service.get_upcoming_restocks()
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"查询即将到货失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/dates/{product_id}", response_model=RestockDateResponse, summary="SKU 预计到货时间")
def get_restock_date(
    product_id: str = Path(...),
    variant_id: Optional[str] = Query(None),
    service: RestockService = Depends(get_restock_service)
):
    try:
        return {
            "product_id": product_id,
            "variant_id": variant_id,
            "expected_date": service.get_restock_date(product_id, variant_id),
        }
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"查询预计到货时间失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/dates/{product_id}/history", response_model=List[RestockHistoryEntry], summary="补货计划历史")
def restock_history(
    product_id: str = Path(...),
    variant_id: Optional[str] = Query(None),
    service: RestockService = Depends(get_restock_service)
):
    try:
        return service.get_restock_history(product_id, variant_id)
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"查询补货计划历史失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/trigger",
    response_model=RestockProcessingResponse,
    summary="触发到货处理",
    description="按优先级履约该 SKU 的预订单，余量通知等待名单；同一补货周期内订阅者只会收到一次提醒。"
)
def trigger_restock_processing(
    request: TriggerRestockRequest = Body(...),
    monitor: InventoryMonitor = Depends(get_inventory_monitor)
):
    try:
        return respond(monitor.trigger_restock_processing(
            request.product_id, request.variant_id, request.new_stock
        ))
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"到货处理失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/process-expired", response_model=ExpiredSweepResponse, summary="处理过期补货计划")
def process_expired(monitor: InventoryMonitor = Depends(get_inventory_monitor)):
    """手动触发过期巡检（API 直接调用 Service）"""
    try:
        return respond(monitor.process_expired_restock_dates())
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"处理过期补货计划失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/process-expired/celery", response_model=CeleryTaskResponse, summary="异步处理过期补货计划")
def process_expired_async():
    """触发 Celery 异步巡检任务"""
    try:
        task = celery_sweep_task.delay()
        return {
            "success": True,
            "message": "已提交异步巡检任务",
            "task_id": task.id
        }
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"Celery 任务提交失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/tasks/{task_id}", response_model=TaskStatusResponse, summary="查询异步任务状态")
def get_task_status(task_id: str):
    try:
        from celery_app import app
        task = app.AsyncResult(task_id)

        if task.state == 'PENDING':
            status = "任务等待中"
        elif task.state == 'SUCCESS':
            status = f"任务完成: {task.result}"
        elif task.state == 'FAILURE':
            status = f"任务失败: {str(task.info)}"
        else:
            status = f"任务状态: {task.state}"

        return {
            "task_id": task_id,
            "status": status,
            "state": task.state
        }
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"查询任务状态失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/stats", response_model=MonitoringStatsResponse, summary="监控统计")
def monitoring_stats(monitor: InventoryMonitor = Depends(get_inventory_monitor)):
    try:
        return monitor.get_monitoring_stats()
    except PASSTHROUGH:
        raise
    except Exception as e:
        logger.error(f"查询监控统计失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
