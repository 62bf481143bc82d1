"""库存台账服务实现

所有对 available_quantity 的写入都经过这里（或经由这里暴露的
履约分配方法），每次写入都在 SKU 锁 + 行锁内完成并记录审计日志。
"""

from collections import OrderedDict
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Dict, Iterable, List, Optional, Tuple
import logging
from redis import Redis, RedisError
from redlock import Redlock

from app.core.config import settings
from app.core.exceptions import (
    InsufficientStock,
    LockConflict,
    StorageUnavailable,
    ValidationError,
    storage_errors,
)
from app.core.locks import denormalize_variant, normalize_variant, sku_key, sku_locks
from app.models.stock_records import StockRecord
from app.models.inventory_logs import InventoryLog, ChangeType
from app.models.orders import Order, OrderItem, OrderStatus, OrderType

logger = logging.getLogger(__name__)

Sku = Tuple[str, str]


class InventoryService:
    """库存核心服务类"""

    def __init__(self, db: Session, redis: Redis = None, rlock: Redlock = None):
        self.db = db
        self.redis = redis
        self.rlock = rlock

    # ==================== 查询 ====================

    def get_stock(self, product_id: str, variant_id: Optional[str] = None) -> int:
        """查询 SKU 可用库存（带缓存）"""
        cache_key = f"stock:available:{sku_key(product_id, variant_id)}"

        if self.redis:
            cached = self.redis.get(cache_key)
            if cached is not None:
                logger.debug(f"Cache hit for {cache_key}")
                return int(cached)

        record = self.get_record(product_id, variant_id)
        available = record.available_quantity if record else 0

        if self.redis:
            self.redis.setex(cache_key, settings.STOCK_CACHE_TTL, available)
            logger.debug(f"Cache set for {cache_key}: {available}")

        return available

    def batch_get_stocks(self, skus: List[Tuple[str, Optional[str]]]) -> Dict[str, int]:
        """批量获取库存，返回 {sku_key: 可用数量}"""
        if not skus:
            return {}

        keys = [sku_key(pid, vid) for pid, vid in skus]
        results = {}
        uncached = []

        if self.redis:
            cached_values = self.redis.mget([f"stock:available:{key}" for key in keys])
            for (pid, vid), key, cached in zip(skus, keys, cached_values):
                if cached is not None:
                    results[key] = int(cached)
                else:
                    uncached.append((pid, vid))
        else:
            uncached = list(skus)

        if uncached:
            product_ids = {pid for pid, _ in uncached}
            records = self.db.execute(
                select(StockRecord).where(StockRecord.product_id.in_(product_ids))
            ).scalars().all()
            stock_map = {sku_key(r.product_id, r.variant_id): r.available_quantity for r in records}

            pipe = self.redis.pipeline() if self.redis else None
            for pid, vid in uncached:
                key = sku_key(pid, vid)
                available = stock_map.get(key, 0)
                results[key] = available
                if pipe is not None:
                    pipe.setex(f"stock:available:{key}", settings.STOCK_CACHE_TTL, available)
            if pipe is not None:
                pipe.execute()

        return results

    def check_stock(self, items: List[dict]) -> List[dict]:
        """逐行检查库存是否满足，纯读取无副作用"""
        self._validate_items(items)
        result = []
        for item in items:
            record = self.get_record(item["product_id"], item.get("variant_id"))
            current = record.available_quantity if record else 0
            result.append({
                "product_id": item["product_id"],
                "variant_id": denormalize_variant(item.get("variant_id")),
                "available": current >= item["quantity"],
                "current_stock": current,
            })
        return result

    def get_record(self, product_id: str, variant_id: Optional[str] = None,
                   for_update: bool = False) -> Optional[StockRecord]:
        stmt = select(StockRecord).where(
            StockRecord.product_id == product_id,
            StockRecord.variant_id == normalize_variant(variant_id),
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_or_create_record(self, product_id: str, variant_id: Optional[str] = None) -> StockRecord:
        """行锁读取台账，不存在时建一行零库存记录"""
        record = self.get_record(product_id, variant_id, for_update=True)
        if record is None:
            record = StockRecord(
                product_id=product_id,
                variant_id=normalize_variant(variant_id),
                available_quantity=0,
                reserved_quantity=0,
                restock_cycle=0,
                version=0,
            )
            self.db.add(record)
            self.db.flush()
        return record

    # ==================== 扣减 / 归还 ====================

    def reserve_and_decrement(self, items: List[dict], order_id: Optional[str] = None,
                              operator: str = "checkout") -> dict:
        """结算扣减库存：整批成功或整批不动

        任一行库存不足时回滚并返回 InsufficientStock 结果；
        存储不可用时回滚并抛出 StorageUnavailable。
        """
        self._validate_items(items)
        totals = self._aggregate(items)

        try:
            with sku_locks(self.rlock, totals.keys()):
                try:
                    records = {sku: self.get_record(*sku, for_update=True) for sku in sorted(totals)}

                    # 先整体校验，按请求顺序报告第一个不足的商品
                    for (pid, vid), quantity in totals.items():
                        record = records[(pid, vid)]
                        available = record.available_quantity if record else 0
                        if available < quantity:
                            raise InsufficientStock(pid, denormalize_variant(vid), quantity, available)

                    for (pid, vid), quantity in totals.items():
                        self.allocate(records[(pid, vid)], quantity, order_id=order_id,
                                      change_type=ChangeType.RESERVE, operator=operator, source="checkout")

                    self.db.commit()
                except InsufficientStock:
                    self.db.rollback()
                    raise
                except storage_errors() as e:
                    self.db.rollback()
                    logger.error(f"扣减库存失败，存储不可用: {str(e)}")
                    raise StorageUnavailable() from e
                except Exception:
                    self.db.rollback()
                    raise
        except InsufficientStock as e:
            logger.info(f"扣减库存被拒绝: {e.message}")
            return e.to_result(
                product_id=e.product_id,
                variant_id=e.variant_id,
                requested=e.requested,
                current_stock=e.available,
            )

        self._invalidate(totals.keys())
        logger.info(f"扣减库存成功: order_id={order_id}, skus={len(totals)}")
        return {
            "success": True,
            "message": "库存扣减成功",
            "updated_items": [
                {"product_id": pid, "variant_id": denormalize_variant(vid), "quantity": qty}
                for (pid, vid), qty in totals.items()
            ],
        }

    def restore_inventory(self, items: List[dict], order_id: Optional[str] = None,
                          operator: str = "cancellation") -> dict:
        """归还库存（订单取消）：尽力而为，单行失败不影响其它行"""
        self._validate_items(items)
        errors = []
        restored = []

        for item in items:
            pid = item["product_id"]
            vid = normalize_variant(item.get("variant_id"))
            quantity = item["quantity"]
            try:
                with sku_locks(self.rlock, [(pid, vid)]):
                    record = self.get_or_create_record(pid, vid)
                    self._increase(record, quantity, ChangeType.RESTORE, order_id=order_id,
                                   operator=operator, source="cancellation")
                    self.db.commit()
                restored.append({"product_id": pid, "variant_id": denormalize_variant(vid), "quantity": quantity})
                self._invalidate([(pid, vid)])
            except (LockConflict, SQLAlchemyError) as e:
                self.db.rollback()
                message = f"归还库存失败: {sku_key(pid, vid)} x{quantity}: {str(e)}"
                # 需要人工对账
                logger.error(f"{message} order_id={order_id}")
                errors.append(message)

        return {
            "success": not errors,
            "message": "库存归还完成" if not errors else f"{len(errors)} 行库存归还失败",
            "errors": errors,
            "restored_items": restored,
        }

    def receive_stock(self, product_id: str, variant_id: Optional[str], quantity: int,
                      operator: str = "admin") -> dict:
        """到货入库，库存从 0 回升时开启新的补货周期"""
        if quantity is None or quantity <= 0:
            raise ValidationError("入库数量必须大于 0")

        vid = normalize_variant(variant_id)
        with sku_locks(self.rlock, [(product_id, vid)]):
            try:
                record = self.get_or_create_record(product_id, vid)
                previous = record.available_quantity
                self._increase(record, quantity, ChangeType.RESTOCK, operator=operator, source="restock")
                self.db.commit()
            except storage_errors() as e:
                self.db.rollback()
                raise StorageUnavailable() from e
            except Exception:
                self.db.rollback()
                raise

        self._invalidate([(product_id, vid)])
        logger.info(f"到货入库: {sku_key(product_id, vid)} {previous} -> {record.available_quantity}")
        return {
            "success": True,
            "message": "入库成功",
            "previous_stock": previous,
            "new_stock": record.available_quantity,
            "restock_cycle": record.restock_cycle,
        }

    # ==================== 台账写入原语（调用方负责锁和提交） ====================

    def allocate(self, record: StockRecord, quantity: int, order_id: Optional[str] = None,
                 change_type: ChangeType = ChangeType.ALLOCATE, operator: str = "fulfillment",
                 source: str = "fulfillment") -> None:
        """扣减一行台账，调用方必须已持有该行的锁"""
        if record is None or record.available_quantity < quantity:
            available = record.available_quantity if record else 0
            pid = record.product_id if record else "?"
            vid = record.variant_id if record else None
            raise InsufficientStock(pid, denormalize_variant(vid), quantity, available)

        before = record.available_quantity
        record.available_quantity = before - quantity
        record.version += 1
        self._log(record, change_type, -quantity, before, order_id, operator, source)

    def _increase(self, record: StockRecord, quantity: int, change_type: ChangeType,
                  order_id: Optional[str] = None, operator: str = None, source: str = None) -> None:
        before = record.available_quantity
        record.available_quantity = before + quantity
        record.version += 1
        if before == 0 and record.available_quantity > 0:
            record.restock_cycle += 1
            logger.info(f"开启新补货周期: {sku_key(record.product_id, record.variant_id)} cycle={record.restock_cycle}")
        self._log(record, change_type, quantity, before, order_id, operator, source)

    def _log(self, record: StockRecord, change_type: ChangeType, quantity: int, before: int,
             order_id: Optional[str], operator: Optional[str], source: Optional[str]) -> None:
        self.db.add(InventoryLog(
            product_id=record.product_id,
            variant_id=record.variant_id,
            order_id=str(order_id) if order_id is not None else None,
            change_type=change_type,
            quantity=quantity,
            before_available=before,
            after_available=record.available_quantity,
            operator=operator,
            source=source,
        ))

    def invalidate_cache(self, skus: Iterable[Tuple[str, Optional[str]]]) -> None:
        self._invalidate(skus)

    def _invalidate(self, skus: Iterable[Tuple[str, Optional[str]]]) -> None:
        if not self.redis:
            return
        for pid, vid in skus:
            try:
                self.redis.delete(f"stock:available:{sku_key(pid, vid)}")
            except RedisError as e:
                # 台账已提交，缓存最多滞后一个 TTL
                logger.warning(f"Cache invalidation failed for {sku_key(pid, vid)}: {str(e)}")
                continue
            logger.debug(f"Cache invalidated for {sku_key(pid, vid)}")

    @staticmethod
    def _validate_items(items: List[dict]) -> None:
        if not items:
            raise ValidationError("商品列表不能为空")
        for item in items:
            if not item.get("product_id"):
                raise ValidationError("缺少 product_id")
            quantity = item.get("quantity")
            if not isinstance(quantity, int) or quantity <= 0:
                raise ValidationError(f"商品 {item.get('product_id')} 的数量必须为正整数")

    @staticmethod
    def _aggregate(items: List[dict]) -> "OrderedDict[Sku, int]":
        totals: "OrderedDict[Sku, int]" = OrderedDict()
        for item in items:
            sku = (item["product_id"], normalize_variant(item.get("variant_id")))
            totals[sku] = totals.get(sku, 0) + item["quantity"]
        return totals

    # ==================== 报表 ====================

    def get_low_stock_alerts(self, threshold: int = 5) -> List[dict]:
        records = self.db.execute(
            select(StockRecord)
            .where(StockRecord.available_quantity <= threshold)
            .order_by(StockRecord.available_quantity.asc(), StockRecord.product_id.asc())
        ).scalars().all()
        return [
            {
                "product_id": r.product_id,
                "variant_id": denormalize_variant(r.variant_id),
                "available_quantity": r.available_quantity,
                "expected_restock_date": r.expected_restock_date,
            }
            for r in records
        ]

    def get_backorder_allocation_summary(self) -> dict:
        """各 SKU 待履约预订单数量与当前库存对照"""
        rows = self.db.execute(
            select(
                OrderItem.product_id,
                OrderItem.variant_id,
                func.count(func.distinct(OrderItem.order_id)),
                func.sum(OrderItem.quantity),
            )
            .join(Order, Order.id == OrderItem.order_id)
            .where(
                Order.order_type == OrderType.BACKORDER,
                Order.status.in_([OrderStatus.PENDING, OrderStatus.PROCESSING]),
                OrderItem.fulfilled_at.is_(None),
            )
            .group_by(OrderItem.product_id, OrderItem.variant_id)
            .order_by(OrderItem.product_id, OrderItem.variant_id)
        ).all()

        pending_allocation = []
        total_quantity = 0
        for pid, vid, order_count, quantity in rows:
            record = self.get_record(pid, vid)
            total_quantity += quantity or 0
            pending_allocation.append({
                "product_id": pid,
                "variant_id": denormalize_variant(vid),
                "pending_orders": order_count,
                "pending_quantity": quantity or 0,
                "available_stock": record.available_quantity if record else 0,
            })

        return {
            "total_pending_quantity": total_quantity,
            "pending_allocation": pending_allocation,
        }
