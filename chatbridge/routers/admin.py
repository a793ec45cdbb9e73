"""Operator endpoints: channel checks, webhook setup, and history moderation."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from chatbridge.config import RoutingConfig, Settings, get_settings
from chatbridge.database import get_db
from chatbridge.dependencies import get_automation_client, get_human_notifier, get_routing_config
from chatbridge.logging_config import get_logger
from chatbridge.schemas.admin import (
    ChannelTestResponse,
    SessionClearResponse,
    SessionHistoryResponse,
    SuspiciousRequest,
    SuspiciousResponse,
)
from chatbridge.schemas.message import MessageOut
from chatbridge.services import conversation_log
from chatbridge.services.alert_service import send_alert
from chatbridge.services.automation_service import AutomationClient
from chatbridge.services.result import StorageError
from chatbridge.services.session_service import extract_display_name, is_valid_session_id
from chatbridge.services.telegram_service import HumanNotifier, TelegramService

logger = get_logger("admin")

router = APIRouter(prefix="/admin")

HISTORY_LIMIT = 500


def _require_admin_token(provided: Optional[str], settings: Settings) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="ADMIN_TOKEN not configured",
        )
    if not provided or provided != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")


def _require_session_id(session_id: str) -> None:
    if not is_valid_session_id(session_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid session id")


def _storage_failure(e: StorageError) -> HTTPException:
    logger.error("Admin storage operation failed", extra={"context": {"event": "admin_storage_error", "error": e.message}})
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Storage error")


@router.post("/telegram/test", response_model=ChannelTestResponse)
def telegram_test(
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    settings: Settings = Depends(get_settings),
    notifier: Optional[HumanNotifier] = Depends(get_human_notifier),
):
    _require_admin_token(x_admin_token, settings)
    if notifier is None:
        return ChannelTestResponse(success=False, message="Telegram not configured", error="missing bot token or chat id")

    result = notifier.send_test_message(settings.site_name)
    if not result.ok:
        return ChannelTestResponse(success=False, message="Telegram test failed", error=result.error)
    return ChannelTestResponse(success=True, message="Test message sent")


@router.post("/telegram/webhook", response_model=ChannelTestResponse)
def telegram_set_webhook(
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    settings: Settings = Depends(get_settings),
):
    """Register /telegram-webhook on PUBLIC_BASE_URL with the Bot API."""
    _require_admin_token(x_admin_token, settings)
    if not settings.telegram_bot_token:
        return ChannelTestResponse(success=False, message="Telegram not configured", error="missing bot token")

    webhook_url = f"{settings.public_base_url.rstrip('/')}/telegram-webhook"
    telegram = TelegramService(settings.telegram_bot_token, timeout=settings.telegram_timeout_seconds)
    response = telegram.set_webhook(webhook_url, settings.telegram_webhook_secret)

    logger.info(
        "Webhook configuration requested",
        extra={"context": {"event": "webhook_config", "url": webhook_url, "success": bool(response.get("ok"))}},
    )
    if not response.get("ok"):
        return ChannelTestResponse(success=False, message="Webhook not set", error=response.get("description"))
    return ChannelTestResponse(success=True, message=f"Webhook set to {webhook_url}")


@router.post("/automation/test", response_model=ChannelTestResponse)
def automation_test(
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    settings: Settings = Depends(get_settings),
    config: RoutingConfig = Depends(get_routing_config),
    automation: AutomationClient = Depends(get_automation_client),
):
    _require_admin_token(x_admin_token, settings)
    result = automation.test_connection(config)
    if not result.ok:
        return ChannelTestResponse(success=False, message="Automation test failed", error=result.error)
    return ChannelTestResponse(success=True, message="Automation answered")


@router.post("/alerts/test", response_model=ChannelTestResponse)
def alerts_test(
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    settings: Settings = Depends(get_settings),
):
    _require_admin_token(x_admin_token, settings)
    sent = send_alert("INFO", "Alerts test", {"source": "admin.alerts_test"})
    if sent:
        return ChannelTestResponse(success=True, message="Alert sent")
    return ChannelTestResponse(success=False, message="Alert not sent (check ALERT_BOT_TOKEN/ALERT_CHAT_ID)")


@router.get("/sessions/{session_id}/messages", response_model=SessionHistoryResponse)
def session_history(
    session_id: str,
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    _require_admin_token(x_admin_token, settings)
    _require_session_id(session_id)
    try:
        rows = conversation_log.read_since(db, session_id, 0, HISTORY_LIMIT)
        count = conversation_log.count_messages(db, session_id)
    except StorageError as e:
        raise _storage_failure(e)

    return SessionHistoryResponse(
        session_id=session_id,
        name=extract_display_name(session_id),
        count=count,
        messages=[MessageOut(**conversation_log.serialize_for_poll(row)) for row in rows],
    )


@router.delete("/sessions/{session_id}/messages", response_model=SessionClearResponse)
def clear_session(
    session_id: str,
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    _require_admin_token(x_admin_token, settings)
    _require_session_id(session_id)
    try:
        deleted = conversation_log.delete_session_messages(db, session_id)
    except StorageError as e:
        raise _storage_failure(e)
    return SessionClearResponse(session_id=session_id, deleted=deleted)


@router.post("/messages/{message_id}/suspicious", response_model=SuspiciousResponse)
def flag_message(
    message_id: int,
    payload: SuspiciousRequest,
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    _require_admin_token(x_admin_token, settings)
    try:
        updated = conversation_log.mark_suspicious(db, message_id, payload.suspicious)
    except StorageError as e:
        raise _storage_failure(e)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return SuspiciousResponse(message_id=message_id, suspicious=payload.suspicious)
