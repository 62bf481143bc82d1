from sqlalchemy import (
    Column,
    String,
    Boolean,
    TIMESTAMP,
    func,
    true,
    UniqueConstraint,
    Index,
)
from app.db.base import Base, BigIntId


class WaitlistSubscription(Base):
    """到货提醒订阅，与是否下过预订单无关"""

    __tablename__ = "waitlist_subscriptions"

    id = Column(
        BigIntId,
        primary_key=True,
        autoincrement=True,
    )

    email = Column(
        String(255),
        nullable=False,
        index=True,
        comment="订阅邮箱",
    )

    product_id = Column(String(64), nullable=False, comment="商品ID")

    variant_id = Column(
        String(64),
        nullable=False,
        server_default="",
        default="",
        comment="变体ID",
    )

    user_id = Column(String(64), nullable=True, comment="登录用户ID")

    is_active = Column(
        Boolean,
        nullable=False,
        server_default=true(),
        default=True,
    )

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

    # 同一邮箱同一 SKU 只保留一行，取消后重新订阅复用该行
    __table_args__ = (
        UniqueConstraint(
            "email",
            "product_id",
            "variant_id",
            name="uq_waitlist_email_sku",
        ),
    )


Index(
    "idx_waitlist_sku_active",
    WaitlistSubscription.product_id,
    WaitlistSubscription.variant_id,
    WaitlistSubscription.is_active,
)
