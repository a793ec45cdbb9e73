"""Automated-response channel: keyword classification and the webhook call."""

import json
import time
from datetime import datetime
from typing import Optional

import httpx

from chatbridge.config import RoutingConfig
from chatbridge.logging_config import get_logger
from chatbridge.services.result import ErrorKind, Result
from chatbridge.services.session_service import extract_display_name

logger = get_logger("automation_service")

TEST_SESSION_ID = "chat_test_000000"
TEST_MESSAGE = "Test message"


def match_automation_keyword(config: RoutingConfig, text: str) -> Optional[str]:
    """First configured keyword contained in text, or None when not eligible."""
    if not config.automation_available or not text:
        return None

    lowered = text.lower()
    for keyword in config.automation_keywords:
        if keyword and keyword in lowered:
            return keyword
    return None


def _extract_answer(body: bytes) -> str:
    try:
        data = json.loads(body)
    except ValueError:
        return body.decode("utf-8", errors="replace").strip()

    if isinstance(data, dict):
        answer = data.get("response")
        return answer.strip() if isinstance(answer, str) else ""
    return ""


def _read_body(response: httpx.Response, deadline: float) -> bytes:
    """Read the streamed body, giving up once the overall deadline passes."""
    chunks = []
    for chunk in response.iter_bytes():
        chunks.append(chunk)
        if time.monotonic() > deadline:
            raise httpx.ReadTimeout("Automation response exceeded deadline", request=response.request)
    return b"".join(chunks)


class AutomationClient:
    """POSTs visitor messages to the automation webhook."""

    def __init__(self, transport: Optional[httpx.BaseTransport] = None):
        self.transport = transport

    def _build_payload(self, message: str, session_id: str, config: RoutingConfig) -> dict:
        return {
            "message": message,
            "session_id": session_id,
            "visitor": extract_display_name(session_id),
            "site": config.site_name,
            "timestamp": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        }

    def request_answer(self, message: str, session_id: str, config: RoutingConfig) -> Result[str]:
        """Ask the automation endpoint for an answer.

        The configured timeout bounds the whole call, body included.
        Returns the non-empty answer text, or a ``channel_error`` failure on
        timeout, transport error, non-2xx status or an empty answer.
        """
        if not config.automation_available:
            return Result.failure("Automation not configured", ErrorKind.CHANNEL)

        headers = {"Content-Type": "application/json"}
        if config.automation_api_key:
            headers["Authorization"] = f"Bearer {config.automation_api_key}"

        payload = self._build_payload(message, session_id, config)
        timeout = config.automation_timeout.total_seconds()
        deadline = time.monotonic() + timeout
        log_context = {"session_id": session_id, "timeout": timeout}

        try:
            with httpx.Client(timeout=timeout, transport=self.transport) as client:
                with client.stream("POST", config.automation_url, json=payload, headers=headers) as response:
                    body = _read_body(response, deadline)
        except httpx.TimeoutException:
            logger.warning("Automation request timed out", extra={"context": {"event": "automation_timeout", **log_context}})
            return Result.failure("Automation request timed out", ErrorKind.CHANNEL)
        except httpx.HTTPError as e:
            logger.warning(
                "Automation request failed",
                extra={"context": {"event": "automation_error", "error": str(e), **log_context}},
            )
            return Result.failure(f"Automation connection error: {e}", ErrorKind.CHANNEL)

        if not response.is_success:
            logger.warning(
                "Automation endpoint returned error status",
                extra={"context": {"event": "automation_api_error", "status_code": response.status_code, **log_context}},
            )
            return Result.failure(f"Automation API error ({response.status_code})", ErrorKind.CHANNEL)

        answer = _extract_answer(body)
        logger.info(
            "Automation response received",
            extra={"context": {"event": "automation_response", "has_answer": bool(answer), **log_context}},
        )
        if not answer:
            return Result.failure("Automation returned no answer", ErrorKind.CHANNEL)
        return Result.success(answer)

    def test_connection(self, config: RoutingConfig) -> Result[str]:
        return self.request_answer(TEST_MESSAGE, TEST_SESSION_ID, config)
