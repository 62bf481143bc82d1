"""测试配置和 fixtures"""
from decimal import Decimal

import pytest
from unittest.mock import Mock
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from redis import Redis
from redlock import Redlock

import app.models  # noqa: F401
from app.db.base import Base
from app.models.product import Product, ProductVariant
from app.models.stock_records import StockRecord


class RecordingSender:
    """记录发出的邮件，fail_for 中的收件人发送失败"""

    def __init__(self):
        self.sent = []
        self.fail_for = set()

    def send(self, to, subject, body):
        if to in self.fail_for:
            return False
        self.sent.append({"to": to, "subject": subject, "body": body})
        return True

    def recipients(self):
        return [mail["to"] for mail in self.sent]


@pytest.fixture
def engine():
    """内存 SQLite，所有连接共享同一个库"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    # pysqlite 默认的事务处理不支持 SAVEPOINT，改为显式 BEGIN
    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def db_session(engine):
    """创建测试数据库会话"""
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def mock_db_session():
    """纯 Mock 的数据库会话，用于不落库的单元测试"""
    return Mock()


@pytest.fixture
def mock_redis():
    """创建模拟 Redis 客户端"""
    redis_mock = Mock(spec=Redis)
    redis_mock.get.return_value = None
    redis_mock.setex.return_value = True
    redis_mock.delete.return_value = 1
    redis_mock.mget.side_effect = lambda keys: [None] * len(keys)
    redis_mock.pipeline.return_value = Mock()
    return redis_mock


@pytest.fixture
def mock_redlock():
    """创建模拟 Redlock 分布式锁"""
    redlock_mock = Mock(spec=Redlock)
    lock_mock = Mock()
    redlock_mock.lock.return_value = lock_mock
    redlock_mock.unlock.return_value = True
    return redlock_mock


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def products(db_session):
    """示例商品：P1 无变体，P2 带两个尺码变体"""
    db_session.add_all([
        Product(id="P1", sku="SKU-P1", name="羊毛大衣", price=Decimal("199.00"), currency="EUR"),
        Product(id="P2", sku="SKU-P2", name="运动鞋", price=Decimal("89.90"), currency="EUR"),
        ProductVariant(id="P2-42", product_id="P2", sku="SKU-P2-42", price=Decimal("89.90")),
        ProductVariant(id="P2-43", product_id="P2", sku="SKU-P2-43", price=None),
    ])
    db_session.commit()
    return ["P1", "P2"]


@pytest.fixture
def set_stock(db_session):
    """直接写入台账，绕过服务（准备测试数据）"""
    def _set(product_id, quantity, variant_id=None, restock_cycle=0):
        record = db_session.get(StockRecord, (product_id, variant_id or ""))
        if record is None:
            record = StockRecord(product_id=product_id, variant_id=variant_id or "",
                                 available_quantity=quantity, reserved_quantity=0,
                                 restock_cycle=restock_cycle, version=0)
            db_session.add(record)
        else:
            record.available_quantity = quantity
        db_session.commit()
        return record
    return _set


@pytest.fixture
def backorder_data():
    """构造预订单请求数据"""
    def _build(product_id="P1", quantity=1, variant_id=None, user_id="u1", **overrides):
        data = {
            "user_id": user_id,
            "items": [{
                "product_id": product_id,
                "variant_id": variant_id,
                "quantity": quantity,
                "size": "M",
                "color": "黑色",
                "price": "199.00",
            }],
            "total_amount": "199.00",
            "currency": "EUR",
            "shipping_address": "Hauptstraße 1",
            "shipping_city": "Berlin",
            "shipping_postal": "10115",
            "customer_email": f"{user_id}@example.com",
        }
        data.update(overrides)
        return data
    return _build


ADMIN_HEADERS = {"X-User-Id": "admin", "X-User-Role": "admin"}


@pytest.fixture
def client(db_session, sender):
    """接入测试库的 API 客户端，不启动 lifespan"""
    from fastapi.testclient import TestClient

    from app.core import dependencies
    from app.main import app

    app.dependency_overrides[dependencies.get_db] = lambda: db_session
    app.dependency_overrides[dependencies.get_redis] = lambda: None
    app.dependency_overrides[dependencies.get_redlock] = lambda: None
    app.dependency_overrides[dependencies.get_email_sender] = lambda: sender
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return dict(ADMIN_HEADERS)
