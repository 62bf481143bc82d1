import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    TIMESTAMP,
    func,
    Enum,
    Index,
)
from app.db.base import Base, BigIntId


class ScheduleStatus(str, enum.Enum):
    PENDING = "PENDING"       # 等待到货
    EXPIRED = "EXPIRED"       # 预计日期已过仍未到货
    FULFILLED = "FULFILLED"   # 在预计日期前到货


class RestockSchedule(Base):
    __tablename__ = "restock_schedules"

    id = Column(
        BigIntId,
        primary_key=True,
        autoincrement=True,
    )

    product_id = Column(String(64), nullable=False, comment="商品ID")

    variant_id = Column(
        String(64),
        nullable=False,
        server_default="",
        default="",
        comment="变体ID",
    )

    expected_date = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        comment="预计到货时间",
    )

    actual_date = Column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="实际到货时间",
    )

    status = Column(
        Enum(ScheduleStatus, name="restock_schedule_status"),
        nullable=False,
        server_default=ScheduleStatus.PENDING.value,
        default=ScheduleStatus.PENDING,
    )

    notes = Column(Text, nullable=True)

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# 过期扫描按状态+日期查询
Index(
    "idx_restock_schedules_status_expected",
    RestockSchedule.status,
    RestockSchedule.expected_date,
)

Index(
    "idx_restock_schedules_sku",
    RestockSchedule.product_id,
    RestockSchedule.variant_id,
)
