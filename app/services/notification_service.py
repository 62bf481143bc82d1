"""到货 / 延期通知服务

每条通知以 dedup_key 唯一登记：
- 到货提醒 restock:{subscription_id}:{restock_cycle}
- 延期提醒 delay:{subscription_id}:{schedule_id}
同一补货周期内重复触发不会再次发送；发送失败的记录可在同一行上重试。
"""

from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple
from urllib.parse import urlencode
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import NotFound, ValidationError
from app.core.locks import denormalize_variant
from app.models.notifications import NotificationStatus, NotificationType, RestockNotification
from app.models.orders import Order
from app.models.restock_schedules import RestockSchedule
from app.models.waitlist import WaitlistSubscription
from app.services.email_sender import EmailSender
from app.services.waitlist_service import WaitlistService

logger = logging.getLogger(__name__)

TRACK_ACTIONS = ("open", "click", "purchase")


class NotificationService:

    def __init__(self, db: Session, sender: EmailSender = None):
        self.db = db
        self.sender = sender or EmailSender()

    # ==================== 发送 ====================

    def send_restock_notifications(self, subscriptions: Iterable[WaitlistSubscription], product: dict) -> int:
        """向订阅者发送到货提醒，返回本次实际发出的数量

        product 需包含 product_id / variant_id / name / price / currency / restock_cycle。
        """
        cycle = product.get("restock_cycle") or 0
        sent = 0
        for subscription in subscriptions:
            if not subscription.is_active:
                continue
            dedup_key = f"restock:{subscription.id}:{cycle}"
            if self._dispatch(
                subscription,
                dedup_key,
                NotificationType.RESTOCK,
                lambda n: self._restock_template(n, product),
                restock_cycle=cycle,
            ):
                sent += 1
        logger.info(f"到货提醒发送完成: product_id={product.get('product_id')}, cycle={cycle}, sent={sent}")
        return sent

    def send_delay_notifications(self, subscriptions: Iterable[WaitlistSubscription], schedule: RestockSchedule) -> int:
        """补货计划过期时通知订阅者到货延期"""
        sent = 0
        for subscription in subscriptions:
            if not subscription.is_active:
                continue
            dedup_key = f"delay:{subscription.id}:{schedule.id}"
            if self._dispatch(
                subscription,
                dedup_key,
                NotificationType.DELAY,
                lambda n: self._delay_template(n, schedule),
                schedule_id=schedule.id,
            ):
                sent += 1
        return sent

    def send_fulfillment_notifications(self, orders: Iterable[Order]) -> int:
        """预订单全部履约后通知客户，不登记跟踪记录"""
        sent = 0
        for order in orders:
            if not order.customer_email:
                continue
            order_number = str(order.id).zfill(8)
            subject = f"您的预订单 {order_number} 已到货"
            body = (
                f"您好，\n\n您的预订单 {order_number} 中的商品已全部到货，我们将尽快为您发货。\n\n"
                f"订单详情: {settings.STORE_BASE_URL}/account/backorders\n"
            )
            if self.sender.send(order.customer_email, subject, body):
                sent += 1
        return sent

    def _dispatch(self, subscription: WaitlistSubscription, dedup_key: str, notification_type: NotificationType,
                  build: Callable[[RestockNotification], Tuple[str, str]], **fields) -> bool:
        notification = self.db.execute(
            select(RestockNotification).where(RestockNotification.dedup_key == dedup_key)
        ).scalar_one_or_none()

        if notification is not None and notification.status != NotificationStatus.FAILED:
            logger.debug(f"通知已登记，跳过: {dedup_key}")
            return False

        if notification is None:
            notification = RestockNotification(
                subscription_id=subscription.id,
                email=subscription.email,
                product_id=subscription.product_id,
                variant_id=subscription.variant_id,
                notification_type=notification_type,
                dedup_key=dedup_key,
                status=NotificationStatus.PENDING,
                **fields,
            )
            try:
                with self.db.begin_nested():
                    self.db.add(notification)
            except IntegrityError:
                # 另一个调度进程已登记
                logger.debug(f"通知并发登记，跳过: {dedup_key}")
                return False

        subject, body = build(notification)
        if self.sender.send(subscription.email, subject, body):
            notification.status = NotificationStatus.SENT
            notification.sent_at = datetime.utcnow()
            notification.error_message = None
            ok = True
        else:
            notification.status = NotificationStatus.FAILED
            notification.error_message = "邮件发送失败"
            ok = False

        self.db.commit()
        return ok

    def _tracking_url(self, notification: RestockNotification, path: str, action: str) -> str:
        query = urlencode({"notificationId": notification.id, "action": action})
        return f"{settings.STORE_BASE_URL}{path}?{query}"

    def _unsubscribe_url(self, notification: RestockNotification) -> str:
        query = urlencode({
            "email": notification.email,
            "productId": notification.product_id,
            "variantId": notification.variant_id,
        })
        return f"{settings.STORE_BASE_URL}/api/v1/waitlist/unsubscribe?{query}"

    def _restock_template(self, notification: RestockNotification, product: dict) -> Tuple[str, str]:
        name = product.get("name") or notification.product_id
        subject = f"到货提醒 - {name}"
        price = product.get("price")
        price_line = f"当前价格: {price} {product.get('currency', '')}\n" if price is not None else ""
        body = (
            f"您好，\n\n您关注的商品「{name}」已经到货！\n{price_line}\n"
            f"立即购买: {self._tracking_url(notification, '/products/' + notification.product_id, 'click')}\n\n"
            f"取消提醒: {self._unsubscribe_url(notification)}\n"
        )
        return subject, body

    def _delay_template(self, notification: RestockNotification, schedule: RestockSchedule) -> Tuple[str, str]:
        subject = "到货延期通知"
        body = (
            f"您好，\n\n您关注的商品 {notification.product_id} 原定 "
            f"{schedule.expected_date.date().isoformat()} 到货，目前仍在补货中。"
            f"到货后我们会第一时间通知您。\n\n"
            f"取消提醒: {self._unsubscribe_url(notification)}\n"
        )
        return subject, body

    # ==================== 跟踪 ====================

    def _get(self, notification_id: int) -> Optional[RestockNotification]:
        return self.db.get(RestockNotification, notification_id)

    def track(self, notification_id: int, action: str) -> dict:
        if action not in TRACK_ACTIONS:
            raise ValidationError(f"无效的跟踪动作: {action}")
        if action == "open":
            return self.track_email_open(notification_id)
        if action == "click":
            return self.track_link_click(notification_id)
        return self.track_purchase_complete(notification_id)

    def track_email_open(self, notification_id: int) -> dict:
        return self._stamp(notification_id, "opened_at")

    def track_link_click(self, notification_id: int) -> dict:
        return self._stamp(notification_id, "clicked_at")

    def track_purchase_complete(self, notification_id: int) -> dict:
        """记录转化：通知终结，订阅随之停用"""
        result = self._stamp(notification_id, "purchased_at")
        if result.get("updated"):
            notification = self._get(notification_id)
            notification.status = NotificationStatus.CONVERTED
            subscription = self.db.get(WaitlistSubscription, notification.subscription_id)
            if subscription is not None and subscription.is_active:
                WaitlistService(self.db).deactivate(subscription)
            self.db.commit()
            logger.info(f"到货提醒转化: notification_id={notification_id}")
        return result

    def _stamp(self, notification_id: int, field: str) -> dict:
        """首次调用写入时间戳，之后的调用不做任何修改"""
        notification = self._get(notification_id)
        if notification is None:
            return NotFound("通知不存在").to_result()
        if getattr(notification, field) is not None:
            return {"success": True, "updated": False, "message": "事件已记录"}
        setattr(notification, field, datetime.utcnow())
        self.db.commit()
        return {"success": True, "updated": True, "message": "事件记录成功"}

    # ==================== 统计 ====================

    def get_notification_analytics(self) -> dict:
        def count(*conditions) -> int:
            return self.db.execute(
                select(func.count(RestockNotification.id)).where(*conditions)
            ).scalar_one()

        sent = count(RestockNotification.sent_at.is_not(None))
        opened = count(RestockNotification.opened_at.is_not(None))
        clicked = count(RestockNotification.clicked_at.is_not(None))
        converted = count(RestockNotification.purchased_at.is_not(None))
        failed = count(RestockNotification.status == NotificationStatus.FAILED)

        def rate(value: int) -> float:
            return round(value / sent, 4) if sent else 0.0

        by_type = self.db.execute(
            select(RestockNotification.notification_type, func.count(RestockNotification.id))
            .group_by(RestockNotification.notification_type)
        ).all()

        return {
            "sent": sent,
            "opened": opened,
            "clicked": clicked,
            "converted": converted,
            "failed": failed,
            "open_rate": rate(opened),
            "click_rate": rate(clicked),
            "conversion_rate": rate(converted),
            "by_type": {t.value: c for t, c in by_type},
        }

    def get_subscription_notifications(self, subscription_id: int) -> List[dict]:
        notifications = self.db.execute(
            select(RestockNotification)
            .where(RestockNotification.subscription_id == subscription_id)
            .order_by(RestockNotification.id.asc())
        ).scalars().all()
        return [
            {
                "id": n.id,
                "type": n.notification_type.value,
                "status": n.status.value,
                "product_id": n.product_id,
                "variant_id": denormalize_variant(n.variant_id),
                "sent_at": n.sent_at,
                "opened_at": n.opened_at,
                "clicked_at": n.clicked_at,
                "purchased_at": n.purchased_at,
            }
            for n in notifications
        ]
