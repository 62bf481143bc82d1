"""库存服务单元测试"""
import pytest
from unittest.mock import Mock
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from redis import RedisError

from app.core.exceptions import LockConflict, StorageUnavailable, ValidationError
from app.services.inventory_service import InventoryService
from app.models.stock_records import StockRecord
from app.models.inventory_logs import InventoryLog, ChangeType


class TestInventoryService:
    """库存服务测试类"""

    def test_init_service(self, db_session, mock_redis, mock_redlock):
        """测试服务初始化"""
        service = InventoryService(db_session, mock_redis, mock_redlock)
        assert service.db == db_session
        assert service.redis == mock_redis
        assert service.rlock == mock_redlock

    def test_get_stock_cache_hit(self, mock_db_session, mock_redis):
        """测试缓存命中情况下的库存查询"""
        mock_redis.get.return_value = "50"

        service = InventoryService(mock_db_session, mock_redis)
        result = service.get_stock("P1")

        assert result == 50
        mock_redis.get.assert_called_once_with("stock:available:P1:base")
        # 缓存命中不应该查询数据库
        mock_db_session.execute.assert_not_called()

    def test_get_stock_cache_miss(self, db_session, mock_redis, set_stock):
        """测试缓存未命中时查库并写缓存"""
        set_stock("P2", 30, variant_id="P2-42")

        service = InventoryService(db_session, mock_redis)
        result = service.get_stock("P2", "P2-42")

        assert result == 30
        mock_redis.setex.assert_called_once_with("stock:available:P2:P2-42", 300, 30)

    def test_get_stock_no_record(self, db_session, mock_redis):
        """测试 SKU 无台账记录的情况"""
        service = InventoryService(db_session, mock_redis)
        assert service.get_stock("UNKNOWN") == 0
        mock_redis.setex.assert_called_once_with("stock:available:UNKNOWN:base", 300, 0)

    def test_batch_get_stocks(self, db_session, mock_redis, set_stock):
        """测试批量查询：缓存命中与未命中混合"""
        set_stock("P1", 4)
        set_stock("P2", 7, variant_id="P2-42")
        mock_redis.mget.side_effect = None
        mock_redis.mget.return_value = ["9", None, None]

        service = InventoryService(db_session, mock_redis)
        result = service.batch_get_stocks([("P2", "P2-43"), ("P1", None), ("P2", "P2-42")])

        assert result == {"P2:P2-43": 9, "P1:base": 4, "P2:P2-42": 7}
        mock_redis.pipeline.return_value.execute.assert_called_once()

    def test_check_stock(self, db_session, set_stock):
        """测试逐行检查库存，纯读取"""
        set_stock("P1", 2)

        service = InventoryService(db_session)
        result = service.check_stock([
            {"product_id": "P1", "quantity": 2},
            {"product_id": "P2", "variant_id": "P2-42", "quantity": 1},
        ])

        assert result == [
            {"product_id": "P1", "variant_id": None, "available": True, "current_stock": 2},
            {"product_id": "P2", "variant_id": "P2-42", "available": False, "current_stock": 0},
        ]
        assert db_session.get(StockRecord, ("P1", "")).available_quantity == 2

    def test_check_stock_rejects_bad_quantity(self, db_session):
        service = InventoryService(db_session)
        with pytest.raises(ValidationError):
            service.check_stock([{"product_id": "P1", "quantity": 0}])

    def test_reserve_and_decrement_success(self, db_session, mock_redis, mock_redlock, set_stock):
        """测试结算扣减成功"""
        set_stock("P1", 10)
        set_stock("P2", 3, variant_id="P2-42")

        service = InventoryService(db_session, mock_redis, mock_redlock)
        result = service.reserve_and_decrement([
            {"product_id": "P1", "quantity": 2},
            {"product_id": "P2", "variant_id": "P2-42", "quantity": 3},
        ], order_id="ORDER001")

        assert result["success"] is True
        assert db_session.get(StockRecord, ("P1", "")).available_quantity == 8
        assert db_session.get(StockRecord, ("P2", "P2-42")).available_quantity == 0

        # 按 SKU 排序加锁并全部释放
        locked = [call.args[0] for call in mock_redlock.lock.call_args_list]
        assert locked == ["lock:inventory:P1:base", "lock:inventory:P2:P2-42"]
        assert mock_redlock.unlock.call_count == 2

        logs = db_session.execute(select(InventoryLog)).scalars().all()
        assert {log.change_type for log in logs} == {ChangeType.RESERVE}
        assert {log.order_id for log in logs} == {"ORDER001"}
        mock_redis.delete.assert_any_call("stock:available:P1:base")

    def test_reserve_and_decrement_is_all_or_nothing(self, db_session, set_stock):
        """测试任一行不足时整批不动"""
        set_stock("P1", 10)
        set_stock("P2", 1, variant_id="P2-42")

        service = InventoryService(db_session)
        result = service.reserve_and_decrement([
            {"product_id": "P1", "quantity": 2},
            {"product_id": "P2", "variant_id": "P2-42", "quantity": 3},
        ])

        assert result["success"] is False
        assert result["error"] == "InsufficientStock"
        assert result["product_id"] == "P2"
        assert result["variant_id"] == "P2-42"
        assert result["requested"] == 3
        assert result["current_stock"] == 1
        db_session.expire_all()
        assert db_session.get(StockRecord, ("P1", "")).available_quantity == 10
        assert db_session.execute(select(InventoryLog)).first() is None

    def test_reserve_aggregates_duplicate_lines(self, db_session, set_stock):
        """同一 SKU 多行合并后再判断库存"""
        set_stock("P1", 3)

        service = InventoryService(db_session)
        result = service.reserve_and_decrement([
            {"product_id": "P1", "quantity": 2},
            {"product_id": "P1", "quantity": 2},
        ])

        assert result["success"] is False
        assert result["requested"] == 4

    def test_no_oversell_across_sequential_checkouts(self, db_session, set_stock):
        """多次结算成功扣减的总量不超过初始库存"""
        set_stock("P1", 5)
        service = InventoryService(db_session)

        reserved = 0
        for quantity in [2, 2, 2, 1, 1]:
            result = service.reserve_and_decrement([{"product_id": "P1", "quantity": quantity}])
            if result["success"]:
                reserved += quantity

        assert reserved == 5
        assert db_session.get(StockRecord, ("P1", "")).available_quantity == 0

    def test_every_ledger_write_bumps_version(self, db_session, set_stock):
        set_stock("P1", 2)
        service = InventoryService(db_session)

        service.reserve_and_decrement([{"product_id": "P1", "quantity": 1}])
        service.receive_stock("P1", None, 3)
        service.restore_inventory([{"product_id": "P1", "quantity": 1}])

        assert db_session.get(StockRecord, ("P1", "")).version == 3

    def test_reserve_lock_conflict(self, db_session, mock_redlock, set_stock):
        """测试拿不到分布式锁时抛出 LockConflict"""
        set_stock("P1", 5)
        mock_redlock.lock.return_value = False

        service = InventoryService(db_session, rlock=mock_redlock)
        with pytest.raises(LockConflict):
            service.reserve_and_decrement([{"product_id": "P1", "quantity": 1}])

        assert db_session.get(StockRecord, ("P1", "")).available_quantity == 5

    def test_reserve_storage_unavailable(self, mock_db_session):
        """测试存储不可用时回滚并抛出 StorageUnavailable"""
        mock_db_session.execute.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))

        service = InventoryService(mock_db_session)
        with pytest.raises(StorageUnavailable):
            service.reserve_and_decrement([{"product_id": "P1", "quantity": 1}])

        mock_db_session.rollback.assert_called_once()
        mock_db_session.commit.assert_not_called()

    def test_restore_inventory(self, db_session, set_stock):
        """测试归还库存，台账不存在时创建"""
        set_stock("P1", 1)

        service = InventoryService(db_session)
        result = service.restore_inventory([
            {"product_id": "P1", "quantity": 2},
            {"product_id": "P2", "variant_id": "P2-43", "quantity": 1},
        ], order_id=7)

        assert result["success"] is True
        assert result["errors"] == []
        assert db_session.get(StockRecord, ("P1", "")).available_quantity == 3
        assert db_session.get(StockRecord, ("P2", "P2-43")).available_quantity == 1

    def test_restore_inventory_is_best_effort(self, db_session, mock_redlock, set_stock):
        """一行拿不到锁不影响其它行归还"""
        set_stock("P1", 0)
        set_stock("P2", 0, variant_id="P2-42")

        def lock(key, ttl):
            return False if key == "lock:inventory:P1:base" else Mock()
        mock_redlock.lock.side_effect = lock

        service = InventoryService(db_session, rlock=mock_redlock)
        result = service.restore_inventory([
            {"product_id": "P1", "quantity": 2},
            {"product_id": "P2", "variant_id": "P2-42", "quantity": 1},
        ])

        assert result["success"] is False
        assert len(result["errors"]) == 1
        assert "P1:base" in result["errors"][0]
        assert result["restored_items"] == [{"product_id": "P2", "variant_id": "P2-42", "quantity": 1}]
        assert db_session.get(StockRecord, ("P2", "P2-42")).available_quantity == 1

    def test_restore_survives_cache_failure(self, db_session, mock_redis, set_stock):
        """归还已提交后缓存删除失败，不影响归还结果"""
        set_stock("P1", 0)
        mock_redis.delete.side_effect = RedisError("connection reset")

        service = InventoryService(db_session, redis=mock_redis)
        result = service.restore_inventory([{"product_id": "P1", "quantity": 2}], order_id=9)

        assert result["success"] is True
        assert result["errors"] == []
        assert db_session.get(StockRecord, ("P1", "")).available_quantity == 2
        mock_redis.delete.assert_called_once_with("stock:available:P1:base")

    def test_receive_stock_starts_new_cycle(self, db_session):
        """库存从 0 回升时补货周期加一，已有库存时不变"""
        service = InventoryService(db_session)

        first = service.receive_stock("P1", None, 5)
        assert first["previous_stock"] == 0
        assert first["new_stock"] == 5
        assert first["restock_cycle"] == 1

        second = service.receive_stock("P1", None, 3)
        assert second["new_stock"] == 8
        assert second["restock_cycle"] == 1

        service.reserve_and_decrement([{"product_id": "P1", "quantity": 8}])
        third = service.receive_stock("P1", None, 1)
        assert third["restock_cycle"] == 2

    def test_receive_stock_rejects_non_positive(self, db_session):
        service = InventoryService(db_session)
        with pytest.raises(ValidationError):
            service.receive_stock("P1", None, 0)

    def test_low_stock_alerts(self, db_session, set_stock):
        set_stock("P1", 2)
        set_stock("P2", 50, variant_id="P2-42")

        alerts = InventoryService(db_session).get_low_stock_alerts(threshold=5)

        assert [a["product_id"] for a in alerts] == ["P1"]
