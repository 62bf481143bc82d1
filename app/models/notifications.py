import enum

from sqlalchemy import (
    Column,
    String,
    Integer,
    Text,
    TIMESTAMP,
    func,
    Enum,
    Index,
    ForeignKey,
)
from app.db.base import Base, BigIntId



# 1️ 通知类型与状态

class NotificationType(str, enum.Enum):
    RESTOCK = "RESTOCK"   # 到货提醒
    DELAY = "DELAY"       # 补货延期提醒


class NotificationStatus(str, enum.Enum):
    PENDING = "PENDING"       # 已登记待发送
    SENT = "SENT"             # 已发送
    FAILED = "FAILED"         # 发送失败，可重试
    CONVERTED = "CONVERTED"   # 已转化购买（终态）
    CANCELLED = "CANCELLED"   # 订阅已取消（终态）



# 2️ 通知记录

class RestockNotification(Base):
    __tablename__ = "restock_notifications"

    id = Column(
        BigIntId,
        primary_key=True,
        autoincrement=True,
    )

    subscription_id = Column(
        BigIntId,
        ForeignKey("waitlist_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    email = Column(String(255), nullable=False)

    product_id = Column(String(64), nullable=False)

    variant_id = Column(
        String(64),
        nullable=False,
        server_default="",
        default="",
    )

    notification_type = Column(
        Enum(NotificationType, name="notification_type"),
        nullable=False,
        default=NotificationType.RESTOCK,
    )

    restock_cycle = Column(
        Integer,
        nullable=True,
        comment="到货提醒对应的补货周期",
    )

    schedule_id = Column(
        BigIntId,
        nullable=True,
        comment="延期提醒对应的补货计划",
    )

    # 去重键：同一订阅同一补货周期（或同一过期计划）只登记一次
    dedup_key = Column(
        String(128),
        nullable=False,
        unique=True,
    )

    status = Column(
        Enum(NotificationStatus, name="notification_status_type"),
        nullable=False,
        server_default=NotificationStatus.PENDING.value,
        default=NotificationStatus.PENDING,
    )

    sent_at = Column(TIMESTAMP(timezone=True), nullable=True)
    opened_at = Column(TIMESTAMP(timezone=True), nullable=True)
    clicked_at = Column(TIMESTAMP(timezone=True), nullable=True)
    purchased_at = Column(TIMESTAMP(timezone=True), nullable=True)

    error_message = Column(Text, nullable=True)

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )



# 3️ 统计查询索引

Index(
    "idx_notifications_type_status",
    RestockNotification.notification_type,
    RestockNotification.status,
)
