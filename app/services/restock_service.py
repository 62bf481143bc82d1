"""补货计划服务

管理员为缺货 SKU 设置预计到货时间；到货时计划转为 FULFILLED，
预计时间已过仍未到货时由巡检转为 EXPIRED。
"""

from datetime import datetime, timezone
from typing import List, Optional
import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.exceptions import ValidationError
from app.core.locks import denormalize_variant, normalize_variant, sku_key
from app.models.orders import Order, OrderItem, OrderStatus, OrderType
from app.models.restock_schedules import RestockSchedule, ScheduleStatus
from app.models.stock_records import StockRecord
from app.models.waitlist import WaitlistSubscription

logger = logging.getLogger(__name__)


class RestockService:

    def __init__(self, db: Session):
        self.db = db

    def _pending_schedule(self, product_id: str, variant_id: Optional[str]) -> Optional[RestockSchedule]:
        return self.db.execute(
            select(RestockSchedule)
            .where(
                RestockSchedule.product_id == product_id,
                RestockSchedule.variant_id == normalize_variant(variant_id),
                RestockSchedule.status == ScheduleStatus.PENDING,
            )
            .order_by(RestockSchedule.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _mirror_date(self, product_id: str, variant_id: str, expected_date: Optional[datetime]) -> None:
        record = self.db.get(StockRecord, (product_id, variant_id))
        if record is not None:
            record.expected_restock_date = expected_date

    def set_restock_date(self, product_id: str, variant_id: Optional[str], expected_date: datetime,
                         notes: Optional[str] = None, commit: bool = True) -> dict:
        """设置或更新 SKU 的预计到货时间（必须在未来）"""
        if expected_date is None:
            raise ValidationError("缺少预计到货时间")
        if expected_date.tzinfo is not None:
            expected_date = expected_date.astimezone(timezone.utc).replace(tzinfo=None)
        if expected_date <= datetime.utcnow():
            raise ValidationError("预计到货时间必须在未来")

        vid = normalize_variant(variant_id)
        schedule = self._pending_schedule(product_id, vid)
        if schedule is None:
            schedule = RestockSchedule(
                product_id=product_id,
                variant_id=vid,
                expected_date=expected_date,
                status=ScheduleStatus.PENDING,
                notes=notes,
            )
            self.db.add(schedule)
        else:
            schedule.expected_date = expected_date
            if notes is not None:
                schedule.notes = notes

        self._mirror_date(product_id, vid, expected_date)
        if commit:
            self.db.commit()
        else:
            self.db.flush()
        logger.info(f"补货计划已更新: {sku_key(product_id, vid)} -> {expected_date.isoformat()}")
        return {"success": True, "message": "预计到货时间已更新", "schedule_id": schedule.id}

    def bulk_update_restock_dates(self, updates: List[dict]) -> dict:
        updated = 0
        errors = []
        for update in updates:
            try:
                self.set_restock_date(
                    update["product_id"],
                    update.get("variant_id"),
                    update.get("expected_date"),
                    update.get("notes"),
                )
                updated += 1
            except ValidationError as e:
                errors.append({"product_id": update.get("product_id"), "error": e.message})
        return {
            "success": True,
            "updated_count": updated,
            "errors": errors,
            "message": f"更新 {updated}/{len(updates)} 条补货计划",
        }

    def get_restock_date(self, product_id: str, variant_id: Optional[str] = None) -> Optional[datetime]:
        schedule = self._pending_schedule(product_id, variant_id)
        return schedule.expected_date if schedule else None

    def mark_fulfilled(self, product_id: str, variant_id: Optional[str] = None) -> bool:
        """实际到货：PENDING 计划转为 FULFILLED，调用方负责提交"""
        vid = normalize_variant(variant_id)
        schedule = self._pending_schedule(product_id, vid)
        if schedule is None:
            return False
        schedule.status = ScheduleStatus.FULFILLED
        schedule.actual_date = datetime.utcnow()
        self._mirror_date(product_id, vid, None)
        logger.info(f"补货计划已完成: {sku_key(product_id, vid)} schedule_id={schedule.id}")
        return True

    def get_overdue_schedules(self, now: Optional[datetime] = None) -> List[RestockSchedule]:
        """只读：预计时间已过但仍为 PENDING 的计划"""
        now = now or datetime.utcnow()
        return self.db.execute(
            select(RestockSchedule)
            .where(
                RestockSchedule.status == ScheduleStatus.PENDING,
                RestockSchedule.expected_date < now,
            )
            .order_by(RestockSchedule.expected_date.asc())
        ).scalars().all()

    def expire_overdue(self, now: Optional[datetime] = None) -> List[RestockSchedule]:
        """预计时间已过的 PENDING 计划转为 EXPIRED，调用方负责提交"""
        now = now or datetime.utcnow()
        schedules = self.db.execute(
            select(RestockSchedule)
            .where(
                RestockSchedule.status == ScheduleStatus.PENDING,
                RestockSchedule.expected_date < now,
            )
            .order_by(RestockSchedule.expected_date.asc())
            .with_for_update(skip_locked=True)
        ).scalars().all()

        for schedule in schedules:
            schedule.status = ScheduleStatus.EXPIRED
            previous = schedule.expected_date.date().isoformat()
            schedule.notes = f"预计到货日期 {previous} 已过"
            self._mirror_date(schedule.product_id, schedule.variant_id, None)

        return schedules

    def get_upcoming_restocks(self) -> List[dict]:
        schedules = self.db.execute(
            select(RestockSchedule)
            .where(
                RestockSchedule.status == ScheduleStatus.PENDING,
                RestockSchedule.expected_date >= datetime.utcnow(),
            )
            .order_by(RestockSchedule.expected_date.asc())
        ).scalars().all()

        upcoming = []
        for schedule in schedules:
            waitlist_count = self.db.execute(
                select(func.count(WaitlistSubscription.id)).where(
                    WaitlistSubscription.product_id == schedule.product_id,
                    WaitlistSubscription.variant_id == schedule.variant_id,
                    WaitlistSubscription.is_active.is_(True),
                )
            ).scalar_one()
            backorder_count = self.db.execute(
                select(func.count(func.distinct(Order.id)))
                .join(OrderItem, OrderItem.order_id == Order.id)
                .where(
                    Order.order_type == OrderType.BACKORDER,
                    Order.status.in_([OrderStatus.PENDING, OrderStatus.PROCESSING]),
                    OrderItem.product_id == schedule.product_id,
                    OrderItem.variant_id == schedule.variant_id,
                    OrderItem.fulfilled_at.is_(None),
                )
            ).scalar_one()
            upcoming.append({
                "schedule_id": schedule.id,
                "product_id": schedule.product_id,
                "variant_id": denormalize_variant(schedule.variant_id),
                "expected_date": schedule.expected_date,
                "waitlist_count": waitlist_count,
                "backorder_count": backorder_count,
                "notes": schedule.notes,
            })
        return upcoming

    def get_restock_history(self, product_id: str, variant_id: Optional[str] = None) -> List[dict]:
        schedules = self.db.execute(
            select(RestockSchedule)
            .where(
                RestockSchedule.product_id == product_id,
                RestockSchedule.variant_id == normalize_variant(variant_id),
            )
            .order_by(RestockSchedule.id.desc())
        ).scalars().all()
        return [
            {
                "schedule_id": s.id,
                "status": s.status.value,
                "expected_date": s.expected_date,
                "actual_date": s.actual_date,
                "notes": s.notes,
                "created_at": s.created_at,
            }
            for s in schedules
        ]
