"""Map operator replies from the Telegram chat back to visitor sessions.

Two reply forms are understood:

- ``/reply <session_id> <text>`` sent anywhere in the operator chat
- a Telegram reply to one of our notices; the session id is read from the
  notice's ``Session: <id>`` line, or looked up by the notice's message id
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from chatbridge.config import RoutingConfig
from chatbridge.logging_config import get_logger
from chatbridge.models import MessageKind
from chatbridge.schemas.telegram import TelegramMessage, TelegramUpdate
from chatbridge.services import conversation_log
from chatbridge.services.result import ErrorKind, Result, StorageError
from chatbridge.services.security_service import clip_text, sanitize_text
from chatbridge.services.session_service import SESSION_ID_TOKEN, is_valid_session_id
from chatbridge.services.telegram_service import SESSION_MARKER

logger = get_logger("reply_correlator")

REPLY_COMMAND = "/reply"

_NOTICE_SESSION_RE = re.compile(re.escape(SESSION_MARKER) + f"({SESSION_ID_TOKEN})(?![A-Za-z0-9_-])")


class ReplyForm(str, Enum):
    COMMAND = "command"
    REPLY_TO = "reply_to"
    IGNORED = "ignored"


@dataclass(frozen=True)
class CorrelatedReply:
    form: ReplyForm
    session_id: Optional[str] = None
    message_id: Optional[int] = None
    reason: Optional[str] = None

    @property
    def appended(self) -> bool:
        return self.message_id is not None


def _ignored(reason: str) -> Result[CorrelatedReply]:
    return Result.success(CorrelatedReply(form=ReplyForm.IGNORED, reason=reason))


def is_reply_command(text: Optional[str]) -> bool:
    return bool(text) and text.startswith(f"{REPLY_COMMAND} ")


def parse_reply_command(text: str) -> Result[tuple[str, str]]:
    """Split ``/reply <session_id> <text>`` into session id and reply body."""
    parts = text.split(" ", 2)
    if len(parts) < 3:
        return Result.failure("Invalid /reply format", ErrorKind.MALFORMED_COMMAND)

    session_id = parts[1].strip()
    if not is_valid_session_id(session_id):
        return Result.failure("Invalid session id in /reply", ErrorKind.MALFORMED_COMMAND)

    body = sanitize_text(parts[2])
    if not body:
        return Result.failure("Empty /reply text", ErrorKind.MALFORMED_COMMAND)
    return Result.success((session_id, body))


def extract_session_from_notice(notice_text: Optional[str]) -> Optional[str]:
    if not notice_text:
        return None
    match = _NOTICE_SESSION_RE.search(notice_text)
    if not match:
        return None
    session_id = match.group(1)
    return session_id if is_valid_session_id(session_id) else None


def _resolve_reply_target(db: Session, original: TelegramMessage) -> Result[str]:
    session_id = extract_session_from_notice(original.text)
    if session_id:
        return Result.success(session_id)

    try:
        stored = conversation_log.read_by_correlation_id(db, original.message_id)
    except StorageError as e:
        return Result.failure(e.message, ErrorKind.STORAGE)
    if stored is not None:
        return Result.success(stored.session_id)

    return Result.failure("Session id not found in replied message", ErrorKind.CORRELATION_NOT_FOUND)


def _is_ignored_sender(message: TelegramMessage, config: RoutingConfig) -> Optional[str]:
    if message.from_user and message.from_user.is_bot:
        return "bot message"
    if config.human_chat_id and str(message.chat.id) != str(config.human_chat_id):
        return "foreign chat"
    return None


def process_channel_update(db: Session, update: TelegramUpdate, config: RoutingConfig) -> Result[CorrelatedReply]:
    """Append an operator reply to the visitor's conversation log.

    Returns an ``ignored`` reply for updates that are not operator replies,
    and a failure (``malformed_command``, ``correlation_not_found`` or
    ``storage_error``) when a reply could not be attributed or stored.
    """
    message = update.message
    if message is None:
        return _ignored("no message")

    reason = _is_ignored_sender(message, config)
    if reason:
        logger.info("Ignoring channel update", extra={"context": {"event": "update_ignored", "reason": reason}})
        return _ignored(reason)

    text = message.text or ""
    if is_reply_command(text):
        form = ReplyForm.COMMAND
        parsed = parse_reply_command(text)
        if not parsed.ok:
            logger.warning(
                "Malformed reply command",
                extra={"context": {"event": "reply_malformed", "error": parsed.error, "telegram_message_id": message.message_id}},
            )
            return Result.failure(parsed.error, parsed.error_code)
        session_id, body = parsed.value
    elif message.reply_to_message is not None:
        form = ReplyForm.REPLY_TO
        body = sanitize_text(text)
        if not body:
            return _ignored("empty reply")
        target = _resolve_reply_target(db, message.reply_to_message)
        if not target.ok:
            logger.warning(
                "Reply could not be correlated",
                extra={
                    "context": {
                        "event": "reply_uncorrelated",
                        "error_code": target.error_code,
                        "reply_to_message_id": message.reply_to_message.message_id,
                    }
                },
            )
            return Result.failure(target.error, target.error_code)
        session_id = target.value
    else:
        return _ignored("no reply detected")

    stored = conversation_log.append_message(
        db,
        session_id,
        clip_text(body, config.message_max_length),
        MessageKind.CHANNEL_REPLY,
        correlation_id=message.message_id,
        max_length=config.message_max_length,
    )
    if not stored.ok:
        return Result.failure(stored.error, stored.error_code)

    logger.info(
        "Operator reply stored",
        extra={"context": {"event": "reply_processed", "form": form.value, "session_id": session_id, "message_id": stored.value}},
    )
    return Result.success(CorrelatedReply(form=form, session_id=session_id, message_id=stored.value))
