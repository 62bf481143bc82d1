"""补货管理路由测试"""
from datetime import datetime, timedelta
from unittest.mock import Mock, patch

from app.models.restock_schedules import RestockSchedule, ScheduleStatus


def _future(days=5):
    return (datetime.utcnow() + timedelta(days=days)).isoformat()


class TestRestockRouter:

    def test_requires_admin(self, client):
        response = client.get("/api/v1/admin/restock/stats", headers={"X-User-Id": "u1"})
        assert response.status_code == 403

    def test_set_and_read_restock_date(self, client, admin_headers):
        response = client.post("/api/v1/admin/restock/dates", headers=admin_headers, json={
            "product_id": "P2", "variant_id": "P2-42", "expected_date": _future()
        })
        read = client.get("/api/v1/admin/restock/dates/P2", headers=admin_headers,
                          params={"variant_id": "P2-42"})
        history = client.get("/api/v1/admin/restock/dates/P2/history", headers=admin_headers,
                             params={"variant_id": "P2-42"})

        assert response.status_code == 200
        assert response.json()["schedule_id"] is not None
        assert read.json()["expected_date"] is not None
        assert [h["status"] for h in history.json()] == ["PENDING"]

    def test_past_date_rejected(self, client, admin_headers):
        response = client.post("/api/v1/admin/restock/dates", headers=admin_headers, json={
            "product_id": "P1", "expected_date": (datetime.utcnow() - timedelta(days=1)).isoformat()
        })

        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"

    def test_bulk_and_upcoming(self, client, admin_headers):
        response = client.post("/api/v1/admin/restock/dates/bulk", headers=admin_headers, json={
            "updates": [
                {"product_id": "P1", "expected_date": _future(2)},
                {"product_id": "P2", "expected_date": _future(4)},
            ]
        })
        upcoming = client.get("/api/v1/admin/restock/dates/upcoming", headers=admin_headers).json()

        assert response.json()["updated_count"] == 2
        assert [u["product_id"] for u in upcoming] == ["P1", "P2"]

    def test_trigger_processing(self, client, products, admin_headers, set_stock, sender):
        client.post("/api/v1/waitlist/subscribe", json={"email": "a@example.com", "product_id": "P1"})
        set_stock("P1", 3, restock_cycle=1)

        first = client.post("/api/v1/admin/restock/trigger", headers=admin_headers,
                            json={"product_id": "P1"})
        second = client.post("/api/v1/admin/restock/trigger", headers=admin_headers,
                             json={"product_id": "P1"})

        assert first.status_code == 200
        assert first.json()["notifications_sent"] == 1
        assert second.json()["notifications_sent"] == 0
        assert sender.recipients() == ["a@example.com"]

    def test_process_expired(self, client, db_session, admin_headers):
        db_session.add(RestockSchedule(
            product_id="P1", variant_id="", status=ScheduleStatus.PENDING,
            expected_date=datetime.utcnow() - timedelta(days=1),
        ))
        db_session.commit()

        response = client.post("/api/v1/admin/restock/process-expired", headers=admin_headers)
        stats = client.get("/api/v1/admin/restock/stats", headers=admin_headers).json()

        assert response.json()["expired_count"] == 1
        assert stats["expired_schedules"] == 1
        assert stats["pending_schedules"] == 0

    def test_process_expired_async(self, client, admin_headers):
        with patch("app.routers.restock_router.celery_sweep_task") as task:
            task.delay.return_value = Mock(id="task-123")
            response = client.post("/api/v1/admin/restock/process-expired/celery", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["task_id"] == "task-123"
        task.delay.assert_called_once_with()

    def test_task_status(self, client, admin_headers):
        with patch("celery_app.app.AsyncResult") as async_result:
            async_result.return_value = Mock(state="SUCCESS", result={"expired_count": 0})
            response = client.get("/api/v1/admin/restock/tasks/task-123", headers=admin_headers)

        data = response.json()
        assert data["state"] == "SUCCESS"
        assert data["status"].startswith("任务完成")
