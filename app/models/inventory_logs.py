import enum

from sqlalchemy import (
    Column,
    String,
    Integer,
    TIMESTAMP,
    func,
    Enum,
    Index,
)
from app.db.base import Base, BigIntId

# 1定义库存变更类型
class ChangeType(str, enum.Enum):
    RESERVE = "RESERVE"     # 结算扣减
    RESTORE = "RESTORE"     # 取消归还
    RESTOCK = "RESTOCK"     # 到货入库
    ALLOCATE = "ALLOCATE"   # 预订单履约分配
    ADJUST = "ADJUST"       # 人工调整
# 2️库存日志表
class InventoryLog(Base):
    __tablename__ = "inventory_logs"

    id = Column(
        BigIntId,
        primary_key=True,
        autoincrement=True,
    )

    product_id = Column(
        String(64),
        nullable=False,
        index=True,
        comment="商品ID",
    )

    variant_id = Column(
        String(64),
        nullable=False,
        server_default="",
        default="",
        comment="变体ID",
    )

    order_id = Column(
        String(64),
        nullable=True,
        index=True,
        comment="订单ID（可能为空，例如到货入库）",
    )

    change_type = Column(
        Enum(
            ChangeType,
            name="inventory_change_type",
        ),
        nullable=False,
        comment="库存变更类型",
    )

    quantity = Column(
        Integer,
        nullable=False,
        comment="变更数量",
    )

    before_available = Column(
        Integer,
        nullable=False,
        comment="变更前可用库存",
    )

    after_available = Column(
        Integer,
        nullable=False,
        comment="变更后可用库存",
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    operator = Column(
        String(64),
        nullable=True,
        comment="操作人/服务名",
    )

    source = Column(
        String(50),
        nullable=True,
        comment="来源：checkout / cancellation / restock / fulfillment",
    )

# 3️组合索引（高频查询优化）


Index(
    "idx_inventory_logs_sku_created_desc",
    InventoryLog.product_id,
    InventoryLog.variant_id,
    InventoryLog.created_at.desc(),
)
