"""到货提醒订阅服务单元测试"""
import pytest
from sqlalchemy import func, select

from app.core.exceptions import ValidationError
from app.models.notifications import NotificationStatus, NotificationType, RestockNotification
from app.models.waitlist import WaitlistSubscription
from app.services.restock_service import RestockService
from app.services.waitlist_service import WaitlistService, is_valid_email


class TestWaitlistService:

    @pytest.mark.parametrize("email,valid", [
        ("kunde@example.com", True),
        ("a.b+c@shop.de", True),
        ("kein-at.example.com", False),
        ("leer@", False),
        ("mit leerzeichen@example.com", False),
        ("", False),
        (None, False),
    ])
    def test_email_format(self, email, valid):
        assert is_valid_email(email) is valid

    def test_subscribe(self, db_session, products):
        service = WaitlistService(db_session)
        result = service.subscribe({"email": "Kunde@Example.com", "product_id": "P1", "user_id": "u1"})

        assert result["success"] is True
        subscription = db_session.get(WaitlistSubscription, result["subscription_id"])
        assert subscription.email == "kunde@example.com"
        assert subscription.variant_id == ""
        assert service.is_subscribed("kunde@example.com", "P1") is True
        assert service.is_subscribed("kunde@example.com", "P2") is False

    def test_subscribe_twice_is_rejected(self, db_session, products):
        service = WaitlistService(db_session)
        first = service.subscribe({"email": "kunde@example.com", "product_id": "P1"})
        second = service.subscribe({"email": "kunde@example.com", "product_id": "P1", "variant_id": None})

        assert second["success"] is False
        assert second["error"] == "AlreadySubscribed"
        assert second["subscription_id"] == first["subscription_id"]
        assert db_session.execute(select(func.count(WaitlistSubscription.id))).scalar_one() == 1

    def test_same_email_different_variants(self, db_session, products):
        service = WaitlistService(db_session)
        a = service.subscribe({"email": "kunde@example.com", "product_id": "P2", "variant_id": "P2-42"})
        b = service.subscribe({"email": "kunde@example.com", "product_id": "P2", "variant_id": "P2-43"})

        assert a["success"] and b["success"]
        assert len(service.get_product_subscriptions("P2", "P2-42")) == 1
        assert service.get_product_subscriptions("P2") == []

    def test_invalid_email_raises(self, db_session, products):
        with pytest.raises(ValidationError):
            WaitlistService(db_session).subscribe({"email": "kaputt", "product_id": "P1"})

    def test_unknown_product(self, db_session, products):
        result = WaitlistService(db_session).subscribe({"email": "kunde@example.com", "product_id": "NOPE"})
        assert result["error"] == "NotFound"

    def test_unsubscribe_then_resubscribe_reuses_row(self, db_session, products):
        service = WaitlistService(db_session)
        first = service.subscribe({"email": "kunde@example.com", "product_id": "P1"})

        assert service.unsubscribe("kunde@example.com", "P1")["success"] is True
        assert service.is_subscribed("kunde@example.com", "P1") is False
        assert service.unsubscribe("kunde@example.com", "P1")["error"] == "NotFound"

        again = service.subscribe({"email": "kunde@example.com", "product_id": "P1"})
        assert again["success"] is True
        assert again["subscription_id"] == first["subscription_id"]

    def test_unsubscribe_cancels_failed_notifications(self, db_session, products):
        service = WaitlistService(db_session)
        sub_id = service.subscribe({"email": "kunde@example.com", "product_id": "P1"})["subscription_id"]
        db_session.add(RestockNotification(
            subscription_id=sub_id, email="kunde@example.com", product_id="P1", variant_id="",
            notification_type=NotificationType.RESTOCK, restock_cycle=1,
            dedup_key=f"restock:{sub_id}:1", status=NotificationStatus.FAILED,
        ))
        db_session.commit()

        service.unsubscribe("kunde@example.com", "P1")

        notification = db_session.execute(select(RestockNotification)).scalar_one()
        assert notification.status == NotificationStatus.CANCELLED

    def test_customer_subscriptions_include_restock_date(self, db_session, products):
        from datetime import datetime, timedelta

        service = WaitlistService(db_session)
        service.subscribe({"email": "kunde@example.com", "product_id": "P1"})
        service.subscribe({"email": "kunde@example.com", "product_id": "P2", "variant_id": "P2-42"})
        expected = datetime.utcnow() + timedelta(days=3)
        RestockService(db_session).set_restock_date("P1", None, expected)

        subscriptions = {s["product_id"]: s for s in service.get_customer_subscriptions("KUNDE@example.com")}

        assert set(subscriptions) == {"P1", "P2"}
        assert subscriptions["P1"]["expected_restock_date"] is not None
        assert subscriptions["P2"]["variant_id"] == "P2-42"
        assert subscriptions["P2"]["expected_restock_date"] is None

    def test_analytics(self, db_session, products):
        service = WaitlistService(db_session)
        service.subscribe({"email": "a@example.com", "product_id": "P1"})
        service.subscribe({"email": "b@example.com", "product_id": "P1"})
        service.subscribe({"email": "c@example.com", "product_id": "P2", "variant_id": "P2-42"})
        service.unsubscribe("c@example.com", "P2", "P2-42")

        analytics = service.get_analytics()

        assert analytics["total_subscriptions"] == 3
        assert analytics["active_subscriptions"] == 2
        assert analytics["by_product"] == [{"product_id": "P1", "count": 2}]
        assert analytics["conversion_rate"] == 0.0
