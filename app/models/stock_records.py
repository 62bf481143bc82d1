from sqlalchemy import (
    Column,
    String,
    Integer,
    CheckConstraint,
    TIMESTAMP,
    func,
)
from app.db.base import Base


class StockRecord(Base):
    """库存台账：每个 SKU (product_id, variant_id) 一行，是可售数量的唯一来源"""

    __tablename__ = "stock_records"

    product_id = Column(
        String(64),
        primary_key=True,
        comment="商品ID",
    )

    variant_id = Column(
        String(64),
        primary_key=True,
        server_default="",
        default="",
        comment="变体ID，空串表示商品本身",
    )

    available_quantity = Column(
        Integer,
        nullable=False,
        server_default="0",
        default=0,
        comment="当前可售库存",
    )

    reserved_quantity = Column(
        Integer,
        nullable=False,
        server_default="0",
        default=0,
        comment="已提交订单占用、尚未扣减的数量",
    )

    restock_cycle = Column(
        Integer,
        nullable=False,
        server_default="0",
        default=0,
        comment="补货周期：库存从 0 回升到正数时加一",
    )

    expected_restock_date = Column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="预计补货时间",
    )

    version = Column(
        Integer,
        nullable=False,
        server_default="0",
        default=0,
        comment="台账写入次数，每次变更加一",
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint(
            "available_quantity >= 0",
            name="ck_available_quantity_non_negative",
        ),
        CheckConstraint(
            "reserved_quantity >= 0",
            name="ck_reserved_quantity_non_negative",
        ),
    )
