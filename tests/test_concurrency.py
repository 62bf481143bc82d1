"""并发扣减与并发履约测试

多个线程各自持有独立会话，共享同一个文件 SQLite 库和一个
线程锁实现的 Redlock 替身，验证 SKU 锁把写入串行化。
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event, func, select
from sqlalchemy.orm import sessionmaker

import app.models  # noqa: F401
from app.db.base import Base
from app.models.inventory_logs import ChangeType, InventoryLog
from app.models.orders import Order, OrderStatus
from app.models.product import Product
from app.models.stock_records import StockRecord
from app.services.backorder_service import BackorderService
from app.services.inventory_service import InventoryService


class ThreadRedlock:
    """进程内的 Redlock 替身：每个 key 一把 threading.Lock"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    def lock(self, key, ttl):
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        if not lock.acquire(timeout=10):
            return False
        return key

    def unlock(self, key):
        self._locks[key].release()


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    with factory() as db:
        db.add(Product(id="P1", sku="SKU-P1", name="羊毛大衣", price=Decimal("199.00"), currency="EUR"))
        db.commit()
    try:
        yield factory
    finally:
        engine.dispose()


def _put_stock(factory, quantity):
    with factory() as db:
        db.add(StockRecord(product_id="P1", variant_id="", available_quantity=quantity,
                           reserved_quantity=0, restock_cycle=1, version=0))
        db.commit()


def _ledger(factory):
    with factory() as db:
        return db.get(StockRecord, ("P1", "")).available_quantity


def test_concurrent_checkouts_never_oversell(session_factory):
    """8 个线程各扣 3 件，库存 10：只有 3 个成功，剩 1 件"""
    _put_stock(session_factory, 10)
    rlock = ThreadRedlock()
    start = threading.Barrier(8)

    def checkout(_):
        start.wait()
        with session_factory() as db:
            result = InventoryService(db, rlock=rlock).reserve_and_decrement(
                [{"product_id": "P1", "quantity": 3}]
            )
        return 3 if result["success"] else 0

    with ThreadPoolExecutor(max_workers=8) as pool:
        reserved = list(pool.map(checkout, range(8)))

    assert sum(reserved) == 9
    assert reserved.count(3) == 3
    assert _ledger(session_factory) == 1


def test_concurrent_fulfillment_never_double_allocates(session_factory, backorder_data):
    """两次到货处理同时履约同一 SKU，每个订单只分配一次"""
    with session_factory() as db:
        service = BackorderService(db)
        order_ids = [
            service.create_backorder(backorder_data(quantity=1, user_id=f"u{i}"))["order_id"]
            for i in range(4)
        ]
    _put_stock(session_factory, 4)
    rlock = ThreadRedlock()
    start = threading.Barrier(2)

    def fulfill(_):
        start.wait()
        with session_factory() as db:
            return BackorderService(db, rlock=rlock).fulfill_backorders("P1", None, 4)["fulfilled_orders"]

    with ThreadPoolExecutor(max_workers=2) as pool:
        first, second = pool.map(fulfill, range(2))

    assert set(first).isdisjoint(second)
    assert sorted(first + second) == sorted(order_ids)
    assert _ledger(session_factory) == 0

    with session_factory() as db:
        allocations = db.execute(
            select(func.count(InventoryLog.id)).where(InventoryLog.change_type == ChangeType.ALLOCATE)
        ).scalar_one()
        statuses = db.execute(select(Order.status)).scalars().all()
    assert allocations == 4
    assert set(statuses) == {OrderStatus.FULFILLED}
