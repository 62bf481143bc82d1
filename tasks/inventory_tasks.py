"""库存相关的 Celery 任务"""

from typing import Optional

from celery_app import app
from app.db.session import SessionLocal
from app.services.inventory_monitor import InventoryMonitor
from app.core.redis import redis_client, redlock
import logging

logger = logging.getLogger(__name__)

@app.task(name='tasks.inventory.process_expired_restock_dates')
def process_expired_restock_dates(notify: Optional[bool] = None):
    """定时巡检过期的补货计划（beat 调度）

    Args:
        notify: 是否发送延期通知，为空时按 NOTIFY_ON_RESTOCK_EXPIRY 配置

    Returns:
        巡检结果字典
    """
    db = SessionLocal()
    try:
        monitor = InventoryMonitor(db, redis_client, redlock)
        result = monitor.process_expired_restock_dates(notify=notify)
        logger.info(result["message"])
        return result
    except Exception as e:
        logger.error(f"过期补货计划巡检失败: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()

@app.task(name='tasks.inventory.trigger_restock_processing')
def trigger_restock_processing(product_id: str, variant_id: Optional[str] = None,
                               new_stock: Optional[int] = None):
    """异步到货处理：履约预订单并通知等待名单

    Args:
        product_id: 商品ID
        variant_id: 变体ID，为空表示商品本身
        new_stock: 到货数量，为空时以台账当前可用量为准
    """
    db = SessionLocal()
    try:
        monitor = InventoryMonitor(db, redis_client, redlock)
        result = monitor.trigger_restock_processing(product_id, variant_id, new_stock)
        logger.info(f"到货处理任务完成: product_id={product_id}, {result['message']}")
        return result
    except Exception as e:
        logger.error(f"到货处理任务失败: product_id={product_id}, error: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()

# 导出任务
__all__ = [
    'process_expired_restock_dates',
    'trigger_restock_processing',
]
