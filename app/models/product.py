from sqlalchemy import (
    Column,
    String,
    Numeric,
    Boolean,
    ForeignKey,
    TIMESTAMP,
    func,
    Index,
    true,
)
from app.db.base import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(
        String(64),
        primary_key=True,
        comment="商品ID",
    )

    sku = Column(
        String(64),
        nullable=False,
        unique=True,
        comment="商品唯一SKU",
    )

    name = Column(
        String(255),
        nullable=False,
        comment="商品名称",
    )

    price = Column(
        Numeric(12, 2),
        nullable=False,
        comment="标价",
    )

    sale_price = Column(
        Numeric(12, 2),
        nullable=True,
        comment="促销价",
    )

    currency = Column(
        String(3),
        nullable=False,
        server_default="EUR",
        default="EUR",
    )

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
        nullable=False,
        onupdate=func.now(),
    )


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(
        String(64),
        primary_key=True,
        comment="变体ID",
    )

    product_id = Column(
        String(64),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="商品ID",
    )

    sku = Column(
        String(64),
        nullable=False,
        unique=True,
        comment="变体SKU",
    )

    price = Column(
        Numeric(12, 2),
        nullable=True,
        comment="变体价格，为空时使用商品价格",
    )

    sale_price = Column(
        Numeric(12, 2),
        nullable=True,
    )

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


Index(
    "idx_products_name",
    Product.name,
)
