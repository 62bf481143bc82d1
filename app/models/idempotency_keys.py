from sqlalchemy import (
    Column,
    String,
    TIMESTAMP,
    ForeignKey,
    func,
    JSON,
)
from app.db.base import Base, BigIntId


# 预订单幂等表：同一支付单只落一张预订单

class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"

    # backorder:{支付单号}
    key = Column(
        String(128),
        primary_key=True,
        comment="幂等唯一键",
    )

    order_id = Column(
        BigIntId,
        ForeignKey("orders.id"),
        nullable=False,
        comment="首次创建的预订单ID",
    )

    # 重复请求时原样返回
    response_snapshot = Column(
        JSON,
        nullable=False,
        comment="创建结果快照",
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
