from datetime import datetime
from unittest.mock import MagicMock, Mock, patch

import httpx

from chatbridge.services.session_service import VisitorContext
from chatbridge.services.telegram_service import (
    SESSION_MARKER,
    HumanNotifier,
    TelegramService,
    build_human_notifier,
    format_visitor_notice,
)


class TestTelegramService:
    @patch("chatbridge.services.telegram_service.httpx.Client")
    def test_send_message(self, mock_client_class):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = httpx.Response(200, json={"ok": True, "result": {"message_id": 42}})

        result = TelegramService("token", timeout=5.0).send_message("-100", "hello")

        assert result["ok"] is True
        url = mock_client.post.call_args[0][0]
        assert url == "https://api.telegram.org/bottoken/sendMessage"
        assert mock_client.post.call_args[1]["json"] == {"chat_id": "-100", "text": "hello", "parse_mode": "HTML"}
        assert mock_client_class.call_args[1]["timeout"] == 5.0

    @patch("chatbridge.services.telegram_service.httpx.Client")
    def test_transport_error_returns_not_ok(self, mock_client_class):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.side_effect = httpx.ConnectTimeout("timeout")

        result = TelegramService("token").send_message("-100", "hello")

        assert result["ok"] is False
        assert "timeout" in result["description"]

    def test_set_webhook_payload(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["body"] = request.read().decode()
            return httpx.Response(200, json={"ok": True, "result": True})

        service = TelegramService("token", transport=httpx.MockTransport(handler))
        result = service.set_webhook("https://chat.example.com/telegram-webhook", secret_token="s3cret")

        assert result["ok"] is True
        assert captured["url"].endswith("/setWebhook")
        assert "s3cret" in captured["body"]
        assert "drop_pending_updates" in captured["body"]


class TestFormatVisitorNotice:
    def test_contains_session_marker_and_details(self):
        context = VisitorContext(session_id="chat_juan_a1b2c3", page="https://example.com/pricing")
        notice = format_visitor_notice(context, "Hi <there>", "Test Site", now=datetime(2024, 5, 1, 10, 30))

        assert f"{SESSION_MARKER}chat_juan_a1b2c3" in notice
        assert "Name: Juan" in notice
        assert "https://example.com/pricing" in notice
        assert "Hi &lt;there&gt;" in notice
        assert "2024-05-01 10:30:00" in notice
        assert "Automatic answer unavailable" not in notice

    def test_automation_unavailable_line(self):
        context = VisitorContext(session_id="chat_juan_a1b2c3")
        notice = format_visitor_notice(context, "hosting?", "Test Site", automation_unavailable=True)
        assert "Automatic answer unavailable" in notice


class TestHumanNotifier:
    def test_notify_returns_message_id(self, visitor, routing_config):
        telegram = Mock()
        telegram.send_message.return_value = {"ok": True, "result": {"message_id": 777}}

        result = HumanNotifier(telegram, "-100").notify(visitor, "hello", routing_config)

        assert result.ok
        assert result.value == 777
        chat_id, text = telegram.send_message.call_args[0]
        assert chat_id == "-100"
        assert "chat_juan_a1b2c3" in text

    def test_notify_failure(self, visitor, routing_config):
        telegram = Mock()
        telegram.send_message.return_value = {"ok": False, "description": "Forbidden: bot was kicked"}

        result = HumanNotifier(telegram, "-100").notify(visitor, "hello", routing_config)

        assert not result.ok
        assert result.error_code == "channel_error"
        assert "kicked" in result.error

    def test_notify_without_message_id(self, visitor, routing_config):
        telegram = Mock()
        telegram.send_message.return_value = {"ok": True, "result": {}}

        assert not HumanNotifier(telegram, "-100").notify(visitor, "hello", routing_config).ok

    def test_build_requires_token_and_chat(self):
        assert build_human_notifier(None, "-100", 30.0) is None
        assert build_human_notifier("token", None, 30.0) is None
        notifier = build_human_notifier("token", "-100", 12.0)
        assert notifier.chat_id == "-100"
        assert notifier.telegram.timeout == 12.0
