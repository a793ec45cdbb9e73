import html
from datetime import datetime
from typing import Optional

import httpx

from chatbridge.config import RoutingConfig
from chatbridge.logging_config import get_logger
from chatbridge.services.result import ErrorKind, Result
from chatbridge.services.session_service import VisitorContext

logger = get_logger("telegram_service")

SESSION_MARKER = "Session: "
DEFAULT_TIMEOUT_SECONDS = 30.0


class TelegramService:
    """Service for sending messages to Telegram."""

    BASE_URL = "https://api.telegram.org/bot{token}"

    def __init__(
        self,
        bot_token: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.bot_token = bot_token
        self.base_url = self.BASE_URL.format(token=bot_token)
        self.timeout = timeout
        self.transport = transport

    def _make_request(self, method: str, data: Optional[dict] = None) -> dict:
        """Make request to Telegram API."""
        url = f"{self.base_url}/{method}"
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(url, json=data or {})
                return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "Telegram API error",
                extra={"context": {"event": "telegram_api_error", "method": method, "error": str(e)}},
            )
            return {"ok": False, "description": str(e)}

    def send_message(
        self,
        chat_id: str,
        text: str,
        parse_mode: Optional[str] = "HTML",
        reply_to_message_id: Optional[int] = None,
    ) -> dict:
        """Send message to Telegram chat."""
        data = {
            "chat_id": chat_id,
            "text": text,
        }
        if parse_mode:
            data["parse_mode"] = parse_mode
        if reply_to_message_id:
            data["reply_to_message_id"] = reply_to_message_id

        return self._make_request("sendMessage", data)

    def set_webhook(self, url: str, secret_token: Optional[str] = None) -> dict:
        """Point the bot's updates at our webhook endpoint."""
        data = {
            "url": url,
            "drop_pending_updates": True,
            "allowed_updates": ["message"],
        }
        if secret_token:
            data["secret_token"] = secret_token
        return self._make_request("setWebhook", data)


def format_visitor_notice(
    context: VisitorContext,
    message: str,
    site_name: str,
    automation_unavailable: bool = False,
    now: Optional[datetime] = None,
) -> str:
    """Format the operator notice for a visitor message.

    The ``Session: <id>`` line is what the reply correlator looks for when the
    operator answers with Telegram's reply feature.
    """
    now = now or datetime.now()
    page = context.page or "unknown page"

    lines = [
        f"💬 <b>New message from {html.escape(site_name)}</b>",
        "",
        f"👤 Name: {html.escape(context.display_name)}",
        f"🔗 {SESSION_MARKER}{context.session_id}",
        f"🌐 Page: {html.escape(page)}",
        "",
        f"📝 Message: {html.escape(message)}",
        f"⏰ Time: {now.strftime('%Y-%m-%d %H:%M:%S')}",
    ]
    if automation_unavailable:
        lines.append("⚠️ Automatic answer unavailable, please reply manually")
    lines.extend(["", f"💡 Reply to this message, or send /reply {context.session_id} &lt;text&gt;"])
    return "\n".join(lines)


class HumanNotifier:
    """Delivers visitor messages to the operator chat."""

    def __init__(self, telegram: TelegramService, chat_id: str):
        self.telegram = telegram
        self.chat_id = chat_id

    def notify(
        self,
        context: VisitorContext,
        message: str,
        config: RoutingConfig,
        automation_unavailable: bool = False,
    ) -> Result[int]:
        """Send the operator notice. Returns the Telegram message_id."""
        text = format_visitor_notice(context, message, config.site_name, automation_unavailable)
        result = self.telegram.send_message(self.chat_id, text)

        if not result.get("ok"):
            error = result.get("description") or "Telegram send failed"
            logger.warning(
                "Operator notification failed",
                extra={"context": {"event": "human_notify_failed", "session_id": context.session_id, "error": error}},
            )
            return Result.failure(error, ErrorKind.CHANNEL)

        message_id = (result.get("result") or {}).get("message_id")
        if message_id is None:
            return Result.failure("Telegram response without message_id", ErrorKind.CHANNEL)
        return Result.success(int(message_id))

    def send_test_message(self, site_name: str) -> Result[int]:
        text = f"🧪 Test message from {html.escape(site_name)} - {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"
        result = self.telegram.send_message(self.chat_id, text)
        if not result.get("ok"):
            return Result.failure(result.get("description") or "Telegram send failed", ErrorKind.CHANNEL)
        return Result.success(int((result.get("result") or {}).get("message_id", 0)))


def build_human_notifier(bot_token: Optional[str], chat_id: Optional[str], timeout: float) -> Optional[HumanNotifier]:
    if not bot_token or not chat_id:
        return None
    return HumanNotifier(TelegramService(bot_token, timeout=timeout), chat_id)
