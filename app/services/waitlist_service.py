"""到货提醒订阅服务"""

import logging
import re
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import AlreadySubscribed, NotFound, ValidationError
from app.core.locks import denormalize_variant, normalize_variant
from app.models.notifications import NotificationStatus, NotificationType, RestockNotification
from app.models.product import Product, ProductVariant
from app.models.restock_schedules import RestockSchedule, ScheduleStatus
from app.models.waitlist import WaitlistSubscription

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and EMAIL_PATTERN.match(email) is not None


class WaitlistService:

    def __init__(self, db: Session):
        self.db = db

    def _find(self, email: str, product_id: str, variant_id: Optional[str]) -> Optional[WaitlistSubscription]:
        return self.db.execute(
            select(WaitlistSubscription).where(
                WaitlistSubscription.email == email.lower(),
                WaitlistSubscription.product_id == product_id,
                WaitlistSubscription.variant_id == normalize_variant(variant_id),
            )
        ).scalar_one_or_none()

    def subscribe(self, data: dict) -> dict:
        """订阅 SKU 到货提醒

        同一 (email, product_id, variant_id) 只允许一个有效订阅；
        已取消的订阅重新激活而不是新建。
        """
        email = (data.get("email") or "").strip()
        if not is_valid_email(email):
            raise ValidationError("邮箱格式不正确")
        if not data.get("product_id"):
            raise ValidationError("缺少 product_id")

        product_id = data["product_id"]
        variant_id = data.get("variant_id")

        existing = self._find(email, product_id, variant_id)
        if existing:
            if existing.is_active:
                return AlreadySubscribed("已订阅该商品的到货提醒").to_result(subscription_id=existing.id)
            existing.is_active = True
            if data.get("user_id"):
                existing.user_id = data["user_id"]
            self.db.commit()
            logger.info(f"到货提醒已重新激活: subscription_id={existing.id}")
            return {"success": True, "subscription_id": existing.id, "message": "到货提醒已重新激活"}

        product = self.db.get(Product, product_id)
        if product is None:
            return NotFound("商品不存在").to_result()
        if variant_id:
            variant = self.db.get(ProductVariant, variant_id)
            if variant is None or variant.product_id != product_id:
                return NotFound("商品变体不存在").to_result()

        subscription = WaitlistSubscription(
            email=email.lower(),
            product_id=product_id,
            variant_id=normalize_variant(variant_id),
            user_id=data.get("user_id"),
            is_active=True,
        )
        self.db.add(subscription)
        try:
            self.db.commit()
        except IntegrityError:
            # 并发重复订阅由唯一约束拦截
            self.db.rollback()
            existing = self._find(email, product_id, variant_id)
            return AlreadySubscribed("已订阅该商品的到货提醒").to_result(
                subscription_id=existing.id if existing else None
            )

        logger.info(f"新增到货提醒: subscription_id={subscription.id}, product_id={product_id}")
        return {"success": True, "subscription_id": subscription.id, "message": "订阅成功"}

    def unsubscribe(self, email: str, product_id: str, variant_id: Optional[str] = None) -> dict:
        subscription = self._find(email, product_id, variant_id)
        if subscription is None or not subscription.is_active:
            return NotFound("订阅不存在").to_result()
        self.deactivate(subscription)
        self.db.commit()
        logger.info(f"到货提醒已取消: subscription_id={subscription.id}")
        return {"success": True, "message": "已取消订阅"}

    def deactivate(self, subscription: WaitlistSubscription) -> None:
        """停用订阅，尚未完成的通知随之关闭，调用方负责提交"""
        subscription.is_active = False
        pending = self.db.execute(
            select(RestockNotification).where(
                RestockNotification.subscription_id == subscription.id,
                RestockNotification.status.in_([NotificationStatus.PENDING, NotificationStatus.FAILED]),
            )
        ).scalars().all()
        for notification in pending:
            notification.status = NotificationStatus.CANCELLED

    def is_subscribed(self, email: str, product_id: str, variant_id: Optional[str] = None) -> bool:
        subscription = self._find(email, product_id, variant_id)
        return bool(subscription and subscription.is_active)

    def get_product_subscriptions(self, product_id: str, variant_id: Optional[str] = None) -> List[WaitlistSubscription]:
        """SKU 的有效订阅，按订阅时间先后"""
        return self.db.execute(
            select(WaitlistSubscription)
            .where(
                WaitlistSubscription.product_id == product_id,
                WaitlistSubscription.variant_id == normalize_variant(variant_id),
                WaitlistSubscription.is_active.is_(True),
            )
            .order_by(WaitlistSubscription.created_at.asc(), WaitlistSubscription.id.asc())
        ).scalars().all()

    def get_customer_subscriptions(self, email: str) -> List[dict]:
        subscriptions = self.db.execute(
            select(WaitlistSubscription)
            .where(
                WaitlistSubscription.email == email.lower(),
                WaitlistSubscription.is_active.is_(True),
            )
            .order_by(WaitlistSubscription.created_at.desc(), WaitlistSubscription.id.desc())
        ).scalars().all()

        result = []
        for sub in subscriptions:
            schedule = self.db.execute(
                select(RestockSchedule)
                .where(
                    RestockSchedule.product_id == sub.product_id,
                    RestockSchedule.variant_id == sub.variant_id,
                    RestockSchedule.status == ScheduleStatus.PENDING,
                )
                .order_by(RestockSchedule.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            result.append({
                "id": sub.id,
                "product_id": sub.product_id,
                "variant_id": denormalize_variant(sub.variant_id),
                "expected_restock_date": schedule.expected_date if schedule else None,
                "created_at": sub.created_at,
            })
        return result

    def get_analytics(self) -> dict:
        total = self.db.execute(select(func.count(WaitlistSubscription.id))).scalar_one()
        active = self.db.execute(
            select(func.count(WaitlistSubscription.id)).where(WaitlistSubscription.is_active.is_(True))
        ).scalar_one()

        by_product = self.db.execute(
            select(WaitlistSubscription.product_id, func.count(WaitlistSubscription.id).label("count"))
            .where(WaitlistSubscription.is_active.is_(True))
            .group_by(WaitlistSubscription.product_id)
            .order_by(func.count(WaitlistSubscription.id).desc(), WaitlistSubscription.product_id)
        ).all()

        by_variant = self.db.execute(
            select(WaitlistSubscription.variant_id, func.count(WaitlistSubscription.id).label("count"))
            .where(
                WaitlistSubscription.is_active.is_(True),
                WaitlistSubscription.variant_id != "",
            )
            .group_by(WaitlistSubscription.variant_id)
            .order_by(func.count(WaitlistSubscription.id).desc(), WaitlistSubscription.variant_id)
        ).all()

        # 转化率：发出过到货提醒的订阅中最终完成购买的比例
        notified = self.db.execute(
            select(func.count(func.distinct(RestockNotification.subscription_id))).where(
                RestockNotification.notification_type == NotificationType.RESTOCK,
                RestockNotification.sent_at.is_not(None),
            )
        ).scalar_one()
        converted = self.db.execute(
            select(func.count(func.distinct(RestockNotification.subscription_id))).where(
                RestockNotification.notification_type == NotificationType.RESTOCK,
                RestockNotification.purchased_at.is_not(None),
            )
        ).scalar_one()

        return {
            "total_subscriptions": total,
            "active_subscriptions": active,
            "by_product": [{"product_id": pid, "count": count} for pid, count in by_product],
            "by_variant": [{"variant_id": vid, "count": count} for vid, count in by_variant],
            "notified_subscriptions": notified,
            "converted_subscriptions": converted,
            "conversion_rate": round(converted / notified, 4) if notified else 0.0,
        }
