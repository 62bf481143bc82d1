import enum

from sqlalchemy import (
    Column,
    String,
    Integer,
    Numeric,
    Text,
    TIMESTAMP,
    func,
    Enum,
    Index,
    ForeignKey,
    CheckConstraint,
)
from sqlalchemy.orm import relationship
from app.db.base import Base, BigIntId



# 1️ 订单类型与状态枚举

class OrderType(str, enum.Enum):
    STANDARD = "standard"     # 现货订单
    BACKORDER = "backorder"   # 预订单（缺货下单）


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"           # 等待到货
    PROCESSING = "PROCESSING"     # 部分行已履约
    FULFILLED = "FULFILLED"       # 全部行已履约（终态）
    CANCELLED = "CANCELLED"       # 已取消（终态）


# 允许的状态迁移
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.FULFILLED, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.FULFILLED, OrderStatus.CANCELLED},
    OrderStatus.FULFILLED: set(),
    OrderStatus.CANCELLED: set(),
}



# 2️ 订单表

class Order(Base):
    __tablename__ = "orders"

    id = Column(
        BigIntId,
        primary_key=True,
        autoincrement=True,
    )

    user_id = Column(
        String(64),
        nullable=False,
        index=True,
        comment="下单用户ID",
    )

    order_type = Column(
        Enum(OrderType, name="order_type"),
        nullable=False,
        default=OrderType.STANDARD,
        comment="订单类型",
    )

    status = Column(
        Enum(OrderStatus, name="order_status_type"),
        nullable=False,
        server_default=OrderStatus.PENDING.value,
        default=OrderStatus.PENDING,
        comment="订单状态",
    )

    total_amount = Column(
        Numeric(12, 2),
        nullable=False,
        comment="订单总额",
    )

    currency = Column(
        String(3),
        nullable=False,
        comment="币种",
    )

    shipping_address = Column(String(255), nullable=False)
    shipping_city = Column(String(128), nullable=False)
    shipping_postal = Column(String(32), nullable=False)

    customer_email = Column(
        String(255),
        nullable=True,
        comment="履约通知邮箱",
    )

    payment_reference = Column(
        String(128),
        nullable=True,
        index=True,
        comment="已完成扣款的支付单号（如 PayPal order id）",
    )

    expected_fulfillment_date = Column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="预计履约时间",
    )

    backorder_priority = Column(
        Integer,
        nullable=True,
        comment="履约排队优先级，越小越先履约，管理员可调整",
    )

    sequence_number = Column(
        Integer,
        nullable=True,
        comment="预订单创建序号，不可修改",
    )

    cancel_reason = Column(Text, nullable=True)

    cancelled_at = Column(TIMESTAMP(timezone=True), nullable=True)

    fulfilled_at = Column(TIMESTAMP(timezone=True), nullable=True)

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

    items = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    @property
    def is_terminal(self) -> bool:
        return not ORDER_TRANSITIONS[self.status]

    def can_transition(self, target: OrderStatus) -> bool:
        return target in ORDER_TRANSITIONS[self.status]



# 3️ 订单行

class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(
        BigIntId,
        primary_key=True,
        autoincrement=True,
    )

    order_id = Column(
        BigIntId,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    product_id = Column(String(64), nullable=False, comment="商品ID")

    variant_id = Column(
        String(64),
        nullable=False,
        server_default="",
        default="",
        comment="变体ID",
    )

    quantity = Column(Integer, nullable=False, comment="数量")

    size = Column(String(32), nullable=False)

    color = Column(String(64), nullable=True)

    price = Column(Numeric(12, 2), nullable=False, comment="单价")

    fulfilled_at = Column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="该行履约时间，为空表示仍在等待库存",
    )

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
    )



# 4️ 履约队列查询索引

Index(
    "idx_orders_type_status_priority",
    Order.order_type,
    Order.status,
    Order.backorder_priority,
)

Index(
    "idx_order_items_sku",
    OrderItem.product_id,
    OrderItem.variant_id,
)
