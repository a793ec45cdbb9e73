import hmac
import json
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError
from sqlalchemy.orm import Session

from chatbridge.config import RoutingConfig, Settings, get_settings
from chatbridge.database import get_db
from chatbridge.dependencies import get_routing_config
from chatbridge.logging_config import get_logger
from chatbridge.schemas.telegram import TelegramUpdate, TelegramWebhookResponse
from chatbridge.services.reply_correlator import process_channel_update
from chatbridge.services.result import ErrorKind

logger = get_logger("telegram_webhook")

router = APIRouter()

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


async def parse_telegram_update(request: Request) -> Optional[dict]:
    """
    Parse Telegram update with tolerant decoding to avoid utf-8 crashes.
    Returns dict or None.
    """
    raw = await request.body()
    for enc in ("utf-8", "latin-1"):
        try:
            decoded = json.loads(raw.decode(enc, errors="replace"))
        except ValueError:
            continue
        return decoded if isinstance(decoded, dict) else None

    logger.error("Failed to decode Telegram webhook payload after fallbacks")
    return None


def _check_secret(provided: Optional[str], settings: Settings) -> None:
    expected = settings.telegram_webhook_secret
    if not expected:
        return
    if not provided or not hmac.compare_digest(provided, expected):
        logger.warning("Rejected webhook with bad secret", extra={"context": {"event": "webhook_forbidden"}})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid webhook secret")


@router.post("/telegram-webhook", response_model=TelegramWebhookResponse)
async def handle_telegram_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    config: RoutingConfig = Depends(get_routing_config),
    secret_token: Optional[str] = Header(default=None, alias=SECRET_HEADER),
):
    """
    Handle Telegram webhook updates:
    - /reply <session_id> <text> from the operator chat
    - replies to visitor notices
    Anything else is acknowledged and ignored.
    """
    _check_secret(secret_token, settings)

    body = await parse_telegram_update(request)
    if body is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid telegram payload")

    try:
        update = TelegramUpdate.model_validate(body)
    except ValidationError as e:
        logger.warning(
            "Telegram update failed validation",
            extra={"context": {"event": "webhook_invalid", "errors": e.error_count()}},
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid telegram payload")

    logger.info(
        "Telegram webhook received",
        extra={"context": {"event": "webhook_received", "update_id": update.update_id, "has_message": update.message is not None}},
    )

    try:
        result = await run_in_threadpool(process_channel_update, db, update, config)
    except Exception as e:
        logger.error(
            "Telegram webhook error",
            extra={"context": {"event": "webhook_error", "update_id": update.update_id, "error": str(e)}},
            exc_info=True,
        )
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")

    if result.is_error(ErrorKind.STORAGE):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")
    if not result.ok:
        return TelegramWebhookResponse(success=False, message=result.error_code)

    reply = result.value
    if not reply.appended:
        return TelegramWebhookResponse(success=True, message=reply.reason)
    return TelegramWebhookResponse(success=True, message="Reply stored", session_id=reply.session_id)


# Backward-compatible alias for bots configured with the old callback path
@router.post("/telegram-callback", response_model=TelegramWebhookResponse)
async def handle_telegram_callback(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    config: RoutingConfig = Depends(get_routing_config),
    secret_token: Optional[str] = Header(default=None, alias=SECRET_HEADER),
):
    return await handle_telegram_webhook(request, db, settings, config, secret_token)
