"""预订单服务实现

预订单生命周期：PENDING -> PROCESSING -> FULFILLED，PENDING/PROCESSING 可取消。
履约队列按 backorder_priority 升序（同优先级按创建时间、ID）严格先进先出，
与订单金额、客户等级无关。
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
import logging

from redis import Redis
from redlock import Redlock
from sqlalchemy import exists, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import (
    InsufficientStock,
    InvalidStateTransition,
    NotFound,
    StorageUnavailable,
    ValidationError,
    storage_errors,
)
from app.core.locks import denormalize_variant, distributed_locks, normalize_variant, sku_key, sku_locks
from app.models.idempotency_keys import IdempotencyKey
from app.models.orders import Order, OrderItem, OrderStatus, OrderType
from app.models.product import Product, ProductVariant
from app.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = (
    "user_id",
    "items",
    "total_amount",
    "currency",
    "shipping_address",
    "shipping_city",
    "shipping_postal",
)

ACTIVE_STATUSES = (OrderStatus.PENDING, OrderStatus.PROCESSING)


class BackorderService:
    """预订单核心服务类"""

    def __init__(self, db: Session, redis: Redis = None, rlock: Redlock = None,
                 inventory: InventoryService = None):
        self.db = db
        self.redis = redis
        self.rlock = rlock
        self.inventory = inventory or InventoryService(db, redis, rlock)

    # ==================== 创建 ====================

    def create_backorder(self, data: dict) -> dict:
        """创建预订单

        不触碰库存台账（缺货本来就没有可占用的库存）。
        带支付单号时按单号幂等：重复提交返回同一订单。
        """
        self._validate_create(data)

        payment_reference = data.get("payment_reference")
        idem_key = f"backorder:{payment_reference}" if payment_reference else None
        if idem_key:
            replay = self._replay(idem_key)
            if replay:
                return replay

        for item in data["items"]:
            failure = self._check_backorderable(item)
            if failure:
                return failure

        try:
            with distributed_locks(self.rlock, ["lock:backorder:sequence"]):
                last_sequence = self.db.execute(
                    select(func.max(Order.sequence_number))
                    .where(Order.order_type == OrderType.BACKORDER)
                ).scalar()
                sequence = (last_sequence or 0) + 1

                order = Order(
                    user_id=data["user_id"],
                    order_type=OrderType.BACKORDER,
                    status=OrderStatus.PENDING,
                    total_amount=Decimal(str(data["total_amount"])),
                    currency=data["currency"],
                    shipping_address=data["shipping_address"],
                    shipping_city=data["shipping_city"],
                    shipping_postal=data["shipping_postal"],
                    customer_email=data.get("customer_email"),
                    payment_reference=payment_reference,
                    expected_fulfillment_date=data.get("expected_fulfillment_date"),
                    sequence_number=sequence,
                    backorder_priority=sequence,
                    items=[
                        OrderItem(
                            product_id=item["product_id"],
                            variant_id=normalize_variant(item.get("variant_id")),
                            quantity=item["quantity"],
                            size=item["size"],
                            color=item.get("color"),
                            price=Decimal(str(item["price"])),
                        )
                        for item in data["items"]
                    ],
                )
                self.db.add(order)
                self.db.flush()

                result = {
                    "success": True,
                    "order_id": order.id,
                    "message": "预订单创建成功",
                }
                if idem_key:
                    self.db.add(IdempotencyKey(
                        key=idem_key,
                        order_id=order.id,
                        response_snapshot=result,
                    ))
                self.db.commit()
        except IntegrityError:
            # 同一支付单并发提交，另一请求已经落库
            self.db.rollback()
            replay = self._replay(idem_key) if idem_key else None
            if replay:
                return replay
            raise
        except storage_errors() as e:
            self.db.rollback()
            logger.error(f"创建预订单失败，存储不可用: {str(e)}")
            raise StorageUnavailable() from e
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"预订单创建成功: order_id={order.id}, priority={order.backorder_priority}")
        return result

    def _replay(self, idem_key: str) -> Optional[dict]:
        record = self.db.get(IdempotencyKey, idem_key)
        if record is not None:
            logger.info(f"重复的预订单请求，返回已创建订单: {idem_key}")
            return dict(record.response_snapshot, message="预订单已存在")
        return None

    @staticmethod
    def _validate_create(data: dict) -> None:
        missing = [field for field in REQUIRED_FIELDS if data.get(field) in (None, "", [])]
        if missing:
            raise ValidationError(f"缺少必填字段: {', '.join(missing)}")

        if Decimal(str(data["total_amount"])) <= 0:
            raise ValidationError("订单总额必须大于 0")

        for index, item in enumerate(data["items"]):
            for field in ("product_id", "quantity", "size", "price"):
                if item.get(field) in (None, ""):
                    raise ValidationError(f"第 {index + 1} 行缺少字段: {field}")
            if not isinstance(item["quantity"], int) or item["quantity"] <= 0:
                raise ValidationError(f"第 {index + 1} 行数量必须为正整数")

    def _check_backorderable(self, item: dict) -> Optional[dict]:
        """商品必须存在且当前库存不足以正常购买"""
        product = self.db.get(Product, item["product_id"])
        if product is None or not product.is_active:
            return NotFound(f"商品 {item['product_id']} 不存在").to_result()

        variant_id = item.get("variant_id")
        if variant_id:
            variant = self.db.get(ProductVariant, variant_id)
            if variant is None or variant.product_id != product.id:
                return NotFound(f"商品变体 {variant_id} 不存在").to_result()

        record = self.inventory.get_record(item["product_id"], variant_id)
        if record and record.available_quantity >= item["quantity"]:
            return {
                "success": False,
                "error": "ItemInStock",
                "message": f"{sku_key(item['product_id'], variant_id)} 有现货，不能预订",
            }
        return None

    # ==================== 查询 ====================

    def _queue_query(self, product_id: Optional[str] = None, variant_id: Optional[str] = None):
        stmt = select(Order).where(
            Order.order_type == OrderType.BACKORDER,
            Order.status.in_(ACTIVE_STATUSES),
        )
        if product_id:
            stmt = stmt.where(
                exists().where(
                    OrderItem.order_id == Order.id,
                    OrderItem.product_id == product_id,
                    OrderItem.variant_id == normalize_variant(variant_id),
                    OrderItem.fulfilled_at.is_(None),
                )
            )
        return stmt.order_by(
            Order.backorder_priority.asc(),
            Order.created_at.asc(),
            Order.id.asc(),
        )

    def get_pending_backorders(self, product_id: Optional[str] = None,
                               variant_id: Optional[str] = None) -> List[dict]:
        """待履约预订单，按履约顺序排列

        指定 product_id 时只返回该 SKU 仍有未履约行的订单（variant_id 为空即商品本身）。
        """
        orders = self.db.execute(self._queue_query(product_id, variant_id)).scalars().all()
        return [self._serialize(order) for order in orders]

    def list_pending_backorders(self, product_id: Optional[str] = None, variant_id: Optional[str] = None,
                                page: int = 1, limit: int = 20) -> dict:
        stmt = self._queue_query(product_id, variant_id)
        total = self.db.execute(
            select(func.count()).select_from(stmt.order_by(None).subquery())
        ).scalar_one()
        orders = self.db.execute(
            stmt.offset((page - 1) * limit).limit(limit)
        ).scalars().all()
        return {
            "items": [self._serialize(order) for order in orders],
            "total": total,
            "page": page,
            "limit": limit,
        }

    def get_backorder_status(self, order_id: int) -> Optional[dict]:
        order = self.db.get(Order, order_id)
        if order is None or order.order_type != OrderType.BACKORDER:
            return None
        return self._serialize(order)

    def get_customer_backorders(self, user_id: str) -> List[dict]:
        orders = self.db.execute(
            select(Order)
            .where(Order.user_id == user_id, Order.order_type == OrderType.BACKORDER)
            .order_by(Order.created_at.desc(), Order.id.desc())
        ).scalars().all()
        return [self._serialize(order) for order in orders]

    # ==================== 履约 ====================

    def fulfill_backorders(self, product_id: str, variant_id: Optional[str], available_quantity: int) -> dict:
        """按优先级用新到库存履约预订单

        同一 SKU 的履约在 SKU 锁 + 台账行锁内单次完成，并发的两次到货不会重复分配。
        每个订单的该 SKU 行要么整行履约，要么跳过留待下次；数量不足的订单
        不占用余量，余量继续分配给后面的订单。单个订单更新失败只记录，不影响后续订单。
        """
        if not isinstance(available_quantity, int) or available_quantity <= 0:
            raise ValidationError("可用数量必须大于 0")

        vid = normalize_variant(variant_id)
        fulfilled_orders = []
        completed_orders = []
        skipped_orders = []
        errors = []

        with sku_locks(self.rlock, [(product_id, vid)]):
            try:
                record = self.inventory.get_record(product_id, vid, for_update=True)
                ledger_available = record.available_quantity if record else 0
                remaining = min(available_quantity, ledger_available)
                shortfall = available_quantity - remaining
                if shortfall:
                    logger.warning(
                        f"履约数量超出台账库存: {sku_key(product_id, vid)} "
                        f"请求 {available_quantity}，台账 {ledger_available}"
                    )

                queue = self.db.execute(
                    self._queue_query(product_id, vid).with_for_update()
                ).scalars().all() if remaining > 0 else []

                for order in queue:
                    if remaining <= 0:
                        break

                    lines = [
                        item for item in order.items
                        if item.product_id == product_id and item.variant_id == vid and item.fulfilled_at is None
                    ]
                    needed = sum(item.quantity for item in lines)
                    if needed > remaining:
                        skipped_orders.append(order.id)
                        continue

                    try:
                        with self.db.begin_nested():
                            now = datetime.utcnow()
                            for item in lines:
                                item.fulfilled_at = now
                            self.inventory.allocate(record, needed, order_id=order.id)
                            if all(item.fulfilled_at is not None for item in order.items):
                                order.status = OrderStatus.FULFILLED
                                order.fulfilled_at = now
                            else:
                                order.status = OrderStatus.PROCESSING
                    except (SQLAlchemyError, InsufficientStock) as e:
                        logger.error(f"履约订单失败: order_id={order.id}, error={str(e)}")
                        errors.append({"order_id": order.id, "error": str(e)})
                        continue

                    remaining -= needed
                    fulfilled_orders.append(order.id)
                    if order.status == OrderStatus.FULFILLED:
                        completed_orders.append(order.id)

                self.db.commit()
            except storage_errors() as e:
                self.db.rollback()
                logger.error(f"履约失败，存储不可用: {str(e)}")
                raise StorageUnavailable() from e
            except Exception:
                self.db.rollback()
                raise

        self.inventory.invalidate_cache([(product_id, vid)])
        logger.info(
            f"履约完成: {sku_key(product_id, vid)} 履约 {len(fulfilled_orders)} 单，"
            f"跳过 {len(skipped_orders)} 单，剩余 {remaining}"
        )
        return {
            "success": True,
            "fulfilled_orders": fulfilled_orders,
            "completed_orders": completed_orders,
            "skipped_orders": skipped_orders,
            "remaining_quantity": remaining,
            "ledger_shortfall": shortfall,
            "errors": errors,
            "message": f"履约 {len(fulfilled_orders)} 个预订单"
                       + (f"，{len(errors)} 个失败" if errors else ""),
        }

    # ==================== 取消 / 调整 ====================

    def cancel_backorder(self, order_id: int, reason: Optional[str] = None) -> dict:
        """取消预订单

        只允许 PENDING / PROCESSING。已履约行占用的库存尽力归还，
        归还失败不阻塞取消，失败明细返回供对账。
        """
        try:
            order = self.db.execute(
                select(Order).where(Order.id == order_id).with_for_update()
            ).scalar_one_or_none()

            if order is None or order.order_type != OrderType.BACKORDER:
                return NotFound("预订单不存在").to_result()

            if not order.can_transition(OrderStatus.CANCELLED):
                return InvalidStateTransition(
                    f"订单当前状态 {order.status.value} 不允许取消"
                ).to_result(status=order.status.value)

            fulfilled_lines = [
                {"product_id": item.product_id, "variant_id": item.variant_id, "quantity": item.quantity}
                for item in order.items if item.fulfilled_at is not None
            ]
            order.status = OrderStatus.CANCELLED
            order.cancel_reason = reason
            order.cancelled_at = datetime.utcnow()
            self.db.commit()
        except storage_errors() as e:
            self.db.rollback()
            raise StorageUnavailable() from e

        logger.info(f"预订单已取消: order_id={order_id}, reason={reason}")

        inventory_errors = []
        if fulfilled_lines:
            restore = self.inventory.restore_inventory(fulfilled_lines, order_id=order_id)
            inventory_errors = restore["errors"]

        return {
            "success": True,
            "message": "预订单已取消",
            "inventory_errors": inventory_errors,
        }

    def reprioritize_backorder(self, order_id: int, priority: int) -> dict:
        """管理员调整履约排队优先级，不影响预计履约时间和创建序号"""
        if not isinstance(priority, int) or priority < 0:
            raise ValidationError("优先级必须为非负整数")

        order = self.db.execute(
            select(Order).where(Order.id == order_id).with_for_update()
        ).scalar_one_or_none()
        if order is None or order.order_type != OrderType.BACKORDER:
            return NotFound("预订单不存在").to_result()
        if order.is_terminal:
            return InvalidStateTransition(
                f"订单当前状态 {order.status.value} 不允许调整优先级"
            ).to_result(status=order.status.value)

        previous = order.backorder_priority
        order.backorder_priority = priority
        self.db.commit()
        logger.info(f"预订单优先级调整: order_id={order_id}, {previous} -> {priority}")
        return {"success": True, "message": "优先级已更新", "previous_priority": previous}

    # ==================== 序列化 ====================

    @staticmethod
    def _serialize(order: Order) -> dict:
        return {
            "id": order.id,
            "user_id": order.user_id,
            "order_type": order.order_type.value,
            "status": order.status.value,
            "total_amount": order.total_amount,
            "currency": order.currency,
            "customer_email": order.customer_email,
            "expected_fulfillment_date": order.expected_fulfillment_date,
            "backorder_priority": order.backorder_priority,
            "sequence_number": order.sequence_number,
            "created_at": order.created_at,
            "items": [
                {
                    "id": item.id,
                    "product_id": item.product_id,
                    "variant_id": denormalize_variant(item.variant_id),
                    "quantity": item.quantity,
                    "size": item.size,
                    "color": item.color,
                    "price": item.price,
                    "fulfilled": item.fulfilled_at is not None,
                }
                for item in order.items
            ],
        }
