"""过期补货计划巡检脚本测试"""
from datetime import datetime, timedelta
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import select

from app.jobs import restock_sweep
from app.models.restock_schedules import RestockSchedule, ScheduleStatus


@pytest.fixture
def overdue(db_session):
    db_session.add_all([
        RestockSchedule(product_id="P1", variant_id="", status=ScheduleStatus.PENDING,
                        expected_date=datetime.utcnow() - timedelta(days=1)),
        RestockSchedule(product_id="P2", variant_id="", status=ScheduleStatus.PENDING,
                        expected_date=datetime.utcnow() + timedelta(days=1)),
    ])
    db_session.commit()


def test_dry_run_changes_nothing(db_session, overdue):
    with patch.object(restock_sweep, "SessionLocal", return_value=db_session):
        assert restock_sweep.run_sweep(dry_run=True) == 1

    statuses = db_session.execute(select(RestockSchedule.status)).scalars().all()
    assert set(statuses) == {ScheduleStatus.PENDING}


def test_sweep_expires_overdue(db_session, overdue):
    with patch.object(restock_sweep, "SessionLocal", return_value=db_session), \
         patch.object(restock_sweep, "redis_client", None), \
         patch.object(restock_sweep, "redlock", None):
        assert restock_sweep.run_sweep(notify=False) == 1

    expired = db_session.execute(
        select(RestockSchedule).where(RestockSchedule.status == ScheduleStatus.EXPIRED)
    ).scalars().all()
    assert [s.product_id for s in expired] == ["P1"]


def test_sweep_failure_rolls_back():
    db_mock = Mock()
    with patch.object(restock_sweep, "SessionLocal", return_value=db_mock), \
         patch.object(restock_sweep, "InventoryMonitor") as mock_monitor:
        mock_monitor.return_value.process_expired_restock_dates.side_effect = RuntimeError("数据库错误")

        with pytest.raises(RuntimeError):
            restock_sweep.run_sweep()

    db_mock.rollback.assert_called_once()
    db_mock.close.assert_called_once()


@pytest.mark.parametrize("argv,expected", [
    (["restock_sweep"], {"dry_run": False, "notify": None}),
    (["restock_sweep", "--dry-run"], {"dry_run": True, "notify": None}),
    (["restock_sweep", "--no-notify"], {"dry_run": False, "notify": False}),
])
def test_cli_arguments(argv, expected):
    with patch("sys.argv", argv), \
         patch.object(restock_sweep, "run_sweep", return_value=0) as mock_run:
        assert restock_sweep.main() == 0

    mock_run.assert_called_once_with(expected["dry_run"], notify=expected["notify"])


def test_cli_reports_failure():
    with patch("sys.argv", ["restock_sweep"]), \
         patch.object(restock_sweep, "run_sweep", side_effect=RuntimeError("连接失败")):
        assert restock_sweep.main() == 1
