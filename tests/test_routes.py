import uuid

import pytest
from fastapi.testclient import TestClient

from assistant.database import get_db
from assistant.main import create_app
from assistant.models import Lead, Notification, Transaction
from assistant.services import user_service
from payloads import telegram_update, whatsapp_update

CRON_HEADERS = {"Authorization": "Bearer cron-secret"}


@pytest.fixture
def client(ctx, db):
    app = create_app(context=ctx)
    app.dependency_overrides[get_db] = lambda: db
    return TestClient(app)


def _enable_morning(db, user):
    user_service.update_notification_preferences(db, user.id, morning_time="08:00", enable_morning=True)


class TestWebhooks:
    def test_telegram_message_is_answered(self, client, llm, messengers):
        llm.script("conversation", {"response": "Hello! 👋"})

        response = client.post("/webhooks/telegram", json=telegram_update("hi"))

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": None}
        assert messengers["telegram"].sent == [("555", "Hello! 👋")]

    def test_telegram_without_text(self, client, llm):
        response = client.post("/webhooks/telegram", json={"update_id": 2, "edited_message": {}})

        assert response.json() == {"success": True, "message": "No message"}
        assert llm.calls == []

    def test_undecodable_body(self, client):
        response = client.post(
            "/webhooks/telegram", content=b"not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 200
        assert response.json() == {"success": False, "message": "Invalid payload"}

    def test_whatsapp_message_is_answered(self, client, llm, messengers):
        llm.script("conversation", {"response": "Noted!"})

        response = client.post("/webhooks/whatsapp", json=whatsapp_update("Coffee R35"))

        assert response.json()["success"] is True
        assert messengers["whatsapp"].sent == [("27821234567", "Noted!")]

    def test_sms_form_is_answered(self, client, llm, messengers):
        llm.script("conversation", {"response": "Hi from SMS"})

        response = client.post("/webhooks/sms", data={"Body": "hello", "From": "+27821234567", "MessageSid": "SM1"})

        assert response.json() == {"success": True, "message": None}
        assert messengers["sms"].sent == [("+27821234567", "Hi from SMS")]

    def test_send_failure_is_reported(self, client, llm, messengers):
        llm.script("conversation", {"response": "Hello!"})
        messengers["telegram"].fail = True

        response = client.post("/webhooks/telegram", json=telegram_update("hi"))

        assert response.json()["success"] is False


class TestWhatsAppVerification:
    def test_challenge_is_echoed(self, client):
        response = client.get(
            "/webhooks/whatsapp",
            params={"hub.mode": "subscribe", "hub.verify_token": "verify-token", "hub.challenge": "12345"},
        )

        assert response.status_code == 200
        assert response.text == "12345"

    @pytest.mark.parametrize(
        "params",
        [
            {"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "1"},
            {"hub.mode": "unsubscribe", "hub.verify_token": "verify-token", "hub.challenge": "1"},
            {},
        ],
    )
    def test_rejected(self, client, params):
        response = client.get("/webhooks/whatsapp", params=params)

        assert response.status_code == 403
        assert response.json() == {"error": "Forbidden"}


class TestHealthAndUsers:
    def test_health(self, client, db, user):
        db.add(Lead(user_id=user.id, name="Acme Corp"))
        db.commit()

        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["services"] == {"database": "connected", "ai": "scripted"}
        assert body["stats"] == {"users": 1, "leads": 1, "transactions": 0}

    def test_users_with_counts(self, client, db, user):
        other = user_service.find_or_create_user(db, "sms", "+27821234567")
        db.add(Transaction(user_id=user.id, description="Coffee", amount=-35, category="Variable Expenses"))
        db.add(Transaction(user_id=user.id, description="Taxi", amount=-20, category="Variable Expenses"))
        db.add(Lead(user_id=other.id, name="Acme Corp"))
        db.commit()

        users = {item["id"]: item for item in client.get("/users").json()["users"]}

        assert users[str(user.id)]["transaction_count"] == 2
        assert users[str(user.id)]["lead_count"] == 0
        assert users[str(other.id)]["lead_count"] == 1
        assert users[str(other.id)]["platform"] == "sms"

    def test_notification_users(self, client, db, user):
        _enable_morning(db, user)

        users = client.get("/notifications/users").json()["users"]

        assert users[0]["enable_morning_notification"] is True
        assert users[0]["morning_notification_time"] == "08:00"


class TestNotificationEndpoints:
    @pytest.mark.parametrize(
        "body",
        [{}, {"user_id": "abc"}, {"type": "morning"}, {"user_id": "abc", "type": "midday"}],
    )
    def test_bad_request(self, client, body):
        assert client.post("/notifications/test", json=body).status_code == 400

    def test_unknown_user(self, client):
        assert client.post("/notifications/test", json={"user_id": "not-a-uuid", "type": "morning"}).status_code == 404
        response = client.post("/notifications/test", json={"userId": str(uuid.uuid4()), "type": "evening"})
        assert response.status_code == 404

    def test_sends_notification(self, client, db, user, llm, messengers):
        _enable_morning(db, user)
        llm.script("morning", "☀️ Good morning!")

        response = client.post("/notifications/test", json={"userId": str(user.id), "type": "morning"})

        body = response.json()
        assert body["success"] is True
        assert body["status"] == "sent"
        assert messengers["telegram"].texts == ["☀️ Good morning!"]
        assert db.query(Notification).count() == 1

    def test_disabled_notifications(self, client, user, llm):
        response = client.post("/notifications/test", json={"user_id": str(user.id), "type": "evening"})

        assert response.json() == {"success": False, "message": "evening notifications are disabled", "status": None}
        assert llm.calls == []


class TestCron:
    def test_requires_secret(self, client):
        assert client.get("/cron/notifications").status_code == 401
        assert client.get("/cron/notifications", headers={"Authorization": "Bearer nope"}).status_code == 401

    def test_unconfigured_secret(self, client, ctx):
        ctx.settings.cron_secret = ""

        assert client.get("/cron/notifications", headers=CRON_HEADERS).status_code == 500

    def test_runs_due_notifications(self, client):
        body = client.get("/cron/notifications", headers=CRON_HEADERS).json()

        assert body["success"] is True
        assert len(body["time"]) == 4
        assert (body["morning_count"], body["evening_count"], body["failed_count"]) == (0, 0, 0)
