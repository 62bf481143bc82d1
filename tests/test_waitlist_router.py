"""到货提醒与通知跟踪路由测试（接入测试库）"""
from sqlalchemy import select

from app.models.notifications import RestockNotification
from app.services.inventory_monitor import InventoryMonitor


def _subscribe(client, email="kunde@example.com", product_id="P1", variant_id=None):
    return client.post("/api/v1/waitlist/subscribe", json={
        "email": email, "product_id": product_id, "variant_id": variant_id
    })


class TestWaitlistRouter:

    def test_subscribe_and_status(self, client, products):
        response = _subscribe(client)
        status = client.get("/api/v1/waitlist/status",
                            params={"email": "kunde@example.com", "product_id": "P1"})

        assert response.status_code == 201
        assert response.json()["subscription_id"] is not None
        assert status.json() == {"subscribed": True}

    def test_duplicate_subscription_conflict(self, client, products):
        _subscribe(client)
        response = _subscribe(client, email="KUNDE@example.com")

        assert response.status_code == 409
        assert response.json()["error"] == "AlreadySubscribed"

    def test_invalid_email(self, client, products):
        response = _subscribe(client, email="kaputt")
        assert response.status_code == 422

    def test_unknown_product(self, client, products):
        assert _subscribe(client, product_id="NOPE").status_code == 404

    def test_unsubscribe_link_from_email(self, client, products):
        _subscribe(client, product_id="P2", variant_id="P2-42")

        response = client.get("/api/v1/waitlist/unsubscribe", params={
            "email": "kunde@example.com", "productId": "P2", "variantId": "P2-42"
        })
        missing = client.post("/api/v1/waitlist/unsubscribe", json={
            "email": "kunde@example.com", "product_id": "P2", "variant_id": "P2-42"
        })

        assert response.status_code == 200
        assert missing.status_code == 404

    def test_customer_subscriptions(self, client, products):
        _subscribe(client)
        _subscribe(client, product_id="P2", variant_id="P2-43")

        response = client.get("/api/v1/waitlist/subscriptions", params={"email": "kunde@example.com"})

        assert sorted(s["product_id"] for s in response.json()) == ["P1", "P2"]

    def test_admin_views(self, client, products, admin_headers):
        _subscribe(client, email="a@example.com")
        _subscribe(client, email="b@example.com")

        assert client.get("/api/v1/waitlist/analytics").status_code == 403
        subscribers = client.get("/api/v1/waitlist/products/P1/subscriptions", headers=admin_headers).json()
        analytics = client.get("/api/v1/waitlist/analytics", headers=admin_headers).json()

        assert [s["email"] for s in subscribers] == ["a@example.com", "b@example.com"]
        assert analytics["active_subscriptions"] == 2


class TestNotificationRouter:

    def _notify(self, client, db_session, sender):
        _subscribe(client)
        InventoryMonitor(db_session, sender=sender).receive_and_process("P1", None, 2)
        return db_session.execute(select(RestockNotification)).scalar_one()

    def test_track_open_once(self, client, db_session, products, sender):
        notification = self._notify(client, db_session, sender)

        first = client.post("/api/v1/notifications/track",
                            json={"notification_id": notification.id, "action": "open"})
        second = client.post("/api/v1/notifications/track",
                             json={"notification_id": notification.id, "action": "open"})

        assert first.json()["updated"] is True
        assert second.status_code == 200
        assert second.json()["updated"] is False

    def test_track_invalid_action(self, client, db_session, products, sender):
        notification = self._notify(client, db_session, sender)

        response = client.post("/api/v1/notifications/track",
                               json={"notification_id": notification.id, "action": "forward"})

        assert response.status_code == 400

    def test_track_unknown_notification(self, client, products):
        response = client.post("/api/v1/notifications/track",
                               json={"notification_id": 4711, "action": "click"})
        assert response.status_code == 404

    def test_purchase_deactivates_subscription(self, client, db_session, products, sender, admin_headers):
        notification = self._notify(client, db_session, sender)

        client.post("/api/v1/notifications/track",
                    json={"notification_id": notification.id, "action": "purchase"})
        status = client.get("/api/v1/waitlist/status",
                            params={"email": "kunde@example.com", "product_id": "P1"})
        analytics = client.get("/api/v1/notifications/analytics", headers=admin_headers).json()
        records = client.get(f"/api/v1/notifications/subscriptions/{notification.subscription_id}",
                             headers=admin_headers).json()

        assert status.json() == {"subscribed": False}
        assert analytics["converted"] == 1
        assert records[0]["status"] == "CONVERTED"
        assert records[0]["type"] == "RESTOCK"
