import asyncio
from unittest.mock import patch

from chatbridge.models import ChatMessage, MessageKind
from chatbridge.schemas.telegram import TelegramChat, TelegramMessage, TelegramUpdate, TelegramUser
from chatbridge.services.reply_correlator import CorrelatedReply, ReplyForm
from chatbridge.services.result import Result

OPERATOR_CHAT_ID = -100123456


def _update(text, reply_to=None, chat_id=OPERATOR_CHAT_ID):
    message = {
        "message_id": 901,
        "date": 1714550400,
        "chat": {"id": chat_id, "type": "supergroup", "title": "Support"},
        "from": {"id": 111222333, "is_bot": False, "first_name": "Operator"},
        "text": text,
    }
    if reply_to:
        message["reply_to_message"] = reply_to
    return {"update_id": 123456789, "message": message}


class TestTelegramSchemas:
    def test_telegram_user(self):
        user = TelegramUser(id=123456, first_name="Juan", last_name="Pérez", username="juanp")
        assert user.id == 123456
        assert user.is_bot is False

    def test_message_from_alias(self):
        msg = TelegramMessage(
            message_id=100,
            date=1702000000,
            chat=TelegramChat(id=-1001234567890, type="supergroup"),
            text="Hello",
            **{"from": TelegramUser(id=123, first_name="Operator")},
        )
        assert msg.from_user.first_name == "Operator"

    def test_nested_reply_to_message(self):
        update = TelegramUpdate.model_validate(
            _update(
                "answer",
                reply_to={
                    "message_id": 55,
                    "date": 1702000000,
                    "chat": {"id": OPERATOR_CHAT_ID, "type": "supergroup"},
                    "from": {"id": 1, "is_bot": True, "first_name": "Bot"},
                    "text": "🔗 Session: chat_juan_a1b2c3",
                },
            )
        )
        original = update.message.reply_to_message
        assert original.message_id == 55
        assert original.from_user.is_bot is True
        assert update.message.from_user.first_name == "Operator"

    def test_unknown_fields_ignored(self):
        raw = _update("hi")
        raw["message"]["message_thread_id"] = 42
        raw["callback_query"] = {"id": "q"}
        update = TelegramUpdate.model_validate(raw)
        assert update.message.text == "hi"


class TestTelegramWebhookEndpoint:
    def test_reply_command_stored(self, client, session_factory):
        response = client.post("/telegram-webhook", json=_update("/reply chat-juan_a1b2c3 Hello there"))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["session_id"] == "chat-juan_a1b2c3"
        with session_factory() as db:
            row = db.query(ChatMessage).one()
        assert row.text == "Hello there"
        assert row.kind == MessageKind.CHANNEL_REPLY.value

    def test_malformed_command_still_200(self, client, session_factory):
        response = client.post("/telegram-webhook", json=_update("/reply onlyonearg"))

        assert response.status_code == 200
        assert response.json() == {"success": False, "message": "malformed_command", "session_id": None}
        with session_factory() as db:
            assert db.query(ChatMessage).count() == 0

    def test_ignored_message(self, client):
        response = client.post("/telegram-webhook", json=_update("just talking"))
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_callback_alias(self, client):
        response = client.post("/telegram-callback", json=_update("/reply chat_juan_a1b2c3 hi"))
        assert response.status_code == 200
        assert response.json()["session_id"] == "chat_juan_a1b2c3"

    def test_undecodable_payload_is_400(self, client):
        response = client.post(
            "/telegram-webhook", content=b"\xff\xfe not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400

    def test_invalid_update_is_400(self, client):
        assert client.post("/telegram-webhook", json={"message": {"text": "no ids"}}).status_code == 400
        assert client.post("/telegram-webhook", json=[1, 2, 3]).status_code == 400

    def test_secret_token_enforced(self, client, test_settings):
        test_settings.telegram_webhook_secret = "hook-secret"

        denied = client.post("/telegram-webhook", json=_update("hi"))
        wrong = client.post(
            "/telegram-webhook", json=_update("hi"), headers={"X-Telegram-Bot-Api-Secret-Token": "nope"}
        )
        allowed = client.post(
            "/telegram-webhook", json=_update("hi"), headers={"X-Telegram-Bot-Api-Secret-Token": "hook-secret"}
        )

        assert denied.status_code == 403
        assert wrong.status_code == 403
        assert allowed.status_code == 200

    def test_update_processed_off_the_event_loop(self, client):
        seen = {}

        def fake_process(db, update, config):
            try:
                asyncio.get_running_loop()
                seen["on_loop"] = True
            except RuntimeError:
                seen["on_loop"] = False
            return Result.success(CorrelatedReply(form=ReplyForm.IGNORED, reason="not a reply"))

        with patch("chatbridge.routers.telegram_webhook.process_channel_update", side_effect=fake_process):
            response = client.post("/telegram-webhook", json=_update("hi"))

        assert response.status_code == 200
        assert seen["on_loop"] is False
