"""库存监控：到货时驱动预订单履约与到货提醒，定时巡检过期的补货计划"""

from datetime import datetime, timedelta
from typing import Optional
import logging

from redis import Redis
from redlock import Redlock
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import LockConflict, StorageUnavailable, storage_errors
from app.core.locks import normalize_variant, sku_key
from app.models.notifications import RestockNotification
from app.models.orders import Order, OrderStatus, OrderType
from app.models.product import Product, ProductVariant
from app.models.restock_schedules import RestockSchedule, ScheduleStatus
from app.models.waitlist import WaitlistSubscription
from app.services.backorder_service import BackorderService
from app.services.email_sender import EmailSender
from app.services.inventory_service import InventoryService
from app.services.notification_service import NotificationService
from app.services.restock_service import RestockService
from app.services.waitlist_service import WaitlistService

logger = logging.getLogger(__name__)


class InventoryMonitor:

    def __init__(self, db: Session, redis: Redis = None, rlock: Redlock = None,
                 sender: EmailSender = None):
        self.db = db
        self.inventory = InventoryService(db, redis, rlock)
        self.backorders = BackorderService(db, redis, rlock, inventory=self.inventory)
        self.restock = RestockService(db)
        self.waitlist = WaitlistService(db)
        self.notifications = NotificationService(db, sender)

    def receive_and_process(self, product_id: str, variant_id: Optional[str], quantity: int,
                            operator: str = "admin") -> dict:
        """管理员到货入库并立即处理预订单和到货提醒"""
        received = self.inventory.receive_stock(product_id, variant_id, quantity, operator=operator)
        try:
            result = self.process_inventory_update(
                product_id, variant_id, received["previous_stock"], received["new_stock"]
            )
        except (LockConflict, StorageUnavailable) + storage_errors() as e:
            # 库存已入账，重试入库会重复计数，到货处理转交异步任务
            self.db.rollback()
            logger.error(f"到货处理失败，已入库待补处理: {sku_key(product_id, variant_id)} error={str(e)}")
            result = {
                "success": True,
                "backorders_fulfilled": 0,
                "notifications_sent": 0,
                "processing_pending": True,
                "task_id": self._enqueue_restock_processing(product_id, variant_id, quantity),
                "message": "入库成功，预订单履约与到货提醒已转入异步处理",
            }
        result.update(previous_stock=received["previous_stock"], new_stock=received["new_stock"])
        return result

    def _enqueue_restock_processing(self, product_id: str, variant_id: Optional[str],
                                    quantity: int) -> Optional[str]:
        from tasks.inventory_tasks import trigger_restock_processing as restock_task

        try:
            task = restock_task.delay(product_id, variant_id, quantity)
        except Exception as e:
            logger.error(f"到货处理任务提交失败，需人工触发: {sku_key(product_id, variant_id)} error={str(e)}")
            return None
        logger.info(f"到货处理已提交异步任务: {sku_key(product_id, variant_id)} task_id={task.id}")
        return task.id

    def process_inventory_update(self, product_id: str, variant_id: Optional[str],
                                 previous_stock: int, new_stock: int) -> dict:
        """库存变化回调，只处理库存上升"""
        if new_stock <= previous_stock:
            return {
                "success": True,
                "backorders_fulfilled": 0,
                "notifications_sent": 0,
                "message": "库存未增加，无需处理",
            }

        return self.trigger_restock_processing(product_id, variant_id, new_stock - previous_stock)

    def trigger_restock_processing(self, product_id: str, variant_id: Optional[str] = None,
                                   new_stock: Optional[int] = None) -> dict:
        """到货处理：先按优先级履约预订单，余量再通知等待名单

        new_stock 为空时以台账当前可用量为准。
        """
        vid = normalize_variant(variant_id)
        if new_stock is None:
            record = self.inventory.get_record(product_id, vid)
            new_stock = record.available_quantity if record else 0

        logger.info(f"开始到货处理: {sku_key(product_id, vid)} quantity={new_stock}")

        fulfilled = []
        errors = []
        remaining = new_stock
        if new_stock > 0:
            if self.restock.mark_fulfilled(product_id, vid):
                self.db.commit()

            fulfillment = self.backorders.fulfill_backorders(product_id, vid, new_stock)
            fulfilled = fulfillment["fulfilled_orders"]
            errors = fulfillment["errors"]
            remaining = fulfillment["remaining_quantity"]

            if fulfillment["completed_orders"]:
                completed = self.db.execute(
                    select(Order).where(Order.id.in_(fulfillment["completed_orders"]))
                ).scalars().all()
                self.notifications.send_fulfillment_notifications(completed)

        notifications_sent = 0
        if remaining > 0:
            subscriptions = self.waitlist.get_product_subscriptions(product_id, vid)
            if subscriptions:
                notifications_sent = self.notifications.send_restock_notifications(
                    subscriptions, self._product_info(product_id, vid)
                )

        message = f"履约 {len(fulfilled)} 个预订单，发送 {notifications_sent} 条到货提醒"
        logger.info(f"到货处理完成: {sku_key(product_id, vid)} {message}")
        return {
            "success": True,
            "backorders_fulfilled": len(fulfilled),
            "fulfilled_orders": fulfilled,
            "remaining_quantity": remaining,
            "notifications_sent": notifications_sent,
            "errors": errors,
            "message": message,
        }

    def _product_info(self, product_id: str, variant_id: str) -> dict:
        product = self.db.get(Product, product_id)
        variant = self.db.get(ProductVariant, variant_id) if variant_id else None
        record = self.inventory.get_record(product_id, variant_id)

        price = None
        if variant is not None and variant.price is not None:
            price = variant.sale_price or variant.price
        elif product is not None:
            price = product.sale_price or product.price

        return {
            "product_id": product_id,
            "variant_id": variant_id,
            "name": product.name if product else product_id,
            "price": price,
            "currency": product.currency if product else "",
            "restock_cycle": record.restock_cycle if record else 0,
        }

    def process_expired_restock_dates(self, notify: Optional[bool] = None) -> dict:
        """定时巡检：过期的补货计划置为 EXPIRED，按配置通知订阅者延期"""
        if notify is None:
            notify = settings.NOTIFY_ON_RESTOCK_EXPIRY

        schedules = self.restock.expire_overdue()
        self.db.commit()

        notifications_sent = 0
        if notify:
            for schedule in schedules:
                subscriptions = self.waitlist.get_product_subscriptions(schedule.product_id, schedule.variant_id)
                if subscriptions:
                    notifications_sent += self.notifications.send_delay_notifications(subscriptions, schedule)

        logger.info(f"过期补货计划巡检完成: expired={len(schedules)}, notified={notifications_sent}")
        return {
            "success": True,
            "expired_count": len(schedules),
            "notifications_sent": notifications_sent,
            "message": f"处理 {len(schedules)} 个过期补货计划",
        }

    def get_monitoring_stats(self) -> dict:
        since = datetime.utcnow() - timedelta(hours=24)

        def count_schedules(status: ScheduleStatus) -> int:
            return self.db.execute(
                select(func.count(RestockSchedule.id)).where(RestockSchedule.status == status)
            ).scalar_one()

        pending_backorders = self.db.execute(
            select(func.count(Order.id)).where(
                Order.order_type == OrderType.BACKORDER,
                Order.status.in_([OrderStatus.PENDING, OrderStatus.PROCESSING]),
            )
        ).scalar_one()
        fulfilled_24h = self.db.execute(
            select(func.count(Order.id)).where(
                Order.order_type == OrderType.BACKORDER,
                Order.status == OrderStatus.FULFILLED,
                Order.fulfilled_at >= since,
            )
        ).scalar_one()
        notifications_24h = self.db.execute(
            select(func.count(RestockNotification.id)).where(RestockNotification.sent_at >= since)
        ).scalar_one()
        active_subscriptions = self.db.execute(
            select(func.count(WaitlistSubscription.id)).where(WaitlistSubscription.is_active.is_(True))
        ).scalar_one()

        return {
            "pending_schedules": count_schedules(ScheduleStatus.PENDING),
            "expired_schedules": count_schedules(ScheduleStatus.EXPIRED),
            "fulfilled_schedules": count_schedules(ScheduleStatus.FULFILLED),
            "pending_backorders": pending_backorders,
            "backorders_fulfilled_24h": fulfilled_24h,
            "notifications_sent_24h": notifications_24h,
            "active_subscriptions": active_subscriptions,
        }
