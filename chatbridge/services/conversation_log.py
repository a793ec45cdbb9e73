"""Append-only per-session message log."""

import html
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chatbridge.logging_config import get_logger
from chatbridge.models import ChatMessage, MessageKind
from chatbridge.services.result import ErrorKind, Result, StorageError
from chatbridge.services.security_service import MAX_MESSAGE_LENGTH, hash_ip

logger = get_logger("conversation_log")

DEFAULT_READ_LIMIT = 50


def _build_sender_info(sender_meta: Optional[dict], ip_salt: str) -> tuple[Optional[dict], Optional[str]]:
    if not sender_meta:
        return None, None

    info = dict(sender_meta)
    raw_ip = info.pop("ip", None)
    ip_hash = hash_ip(raw_ip, ip_salt) if raw_ip else None
    info["ip_hash"] = ip_hash
    return info, ip_hash


def append_message(
    db: Session,
    session_id: str,
    text: str,
    kind: MessageKind,
    correlation_id: Optional[int] = None,
    sender_meta: Optional[dict] = None,
    automated: bool = False,
    max_length: int = MAX_MESSAGE_LENGTH,
    ip_salt: str = "",
) -> Result[int]:
    """Persist one message and return its id.

    The raw visitor address in ``sender_meta["ip"]`` is replaced by a salted
    hash before anything is written.
    """
    if not session_id:
        return Result.failure("Session id is required", ErrorKind.VALIDATION)
    if not text or not text.strip():
        return Result.failure("Message text is required", ErrorKind.VALIDATION)
    if len(text) > max_length:
        return Result.failure(f"Message too long (max {max_length} characters)", ErrorKind.VALIDATION)
    try:
        kind = MessageKind(kind)
    except ValueError:
        return Result.failure(f"Unknown message kind: {kind}", ErrorKind.VALIDATION)

    sender_info, ip_hash = _build_sender_info(sender_meta, ip_salt)
    message = ChatMessage(
        session_id=session_id,
        text=text,
        kind=kind.value,
        sender_info=sender_info,
        correlation_id=correlation_id,
        ip_hash=ip_hash,
        is_automated=automated,
        is_suspicious=False,
        created_at=datetime.now(timezone.utc),
    )

    try:
        db.add(message)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "Failed to append message",
            extra={"context": {"event": "append_failed", "session_id": session_id, "kind": kind.value, "error": str(e)}},
        )
        return Result.failure("Could not store message", ErrorKind.STORAGE)

    return Result.success(message.id)


def read_since(
    db: Session,
    session_id: str,
    after_id: int = 0,
    limit: int = DEFAULT_READ_LIMIT,
) -> list[ChatMessage]:
    """Messages of a session with id > after_id, oldest first."""
    try:
        return (
            db.query(ChatMessage)
            .filter(ChatMessage.session_id == session_id, ChatMessage.id > after_id)
            .order_by(ChatMessage.id.asc())
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as e:
        raise StorageError(f"read_since failed: {e}") from e


def read_by_correlation_id(db: Session, correlation_id: int) -> Optional[ChatMessage]:
    try:
        return (
            db.query(ChatMessage)
            .filter(ChatMessage.correlation_id == correlation_id)
            .order_by(ChatMessage.id.desc())
            .first()
        )
    except SQLAlchemyError as e:
        raise StorageError(f"read_by_correlation_id failed: {e}") from e


def get_message(db: Session, message_id: int) -> Optional[ChatMessage]:
    try:
        return db.query(ChatMessage).filter(ChatMessage.id == message_id).first()
    except SQLAlchemyError as e:
        raise StorageError(f"get_message failed: {e}") from e


def set_correlation_id(db: Session, message_id: int, correlation_id: int) -> bool:
    """Attach the channel message id of the operator notice to a visitor message."""
    try:
        updated = (
            db.query(ChatMessage)
            .filter(ChatMessage.id == message_id)
            .update({ChatMessage.correlation_id: correlation_id}, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "Failed to store correlation id",
            extra={"context": {"event": "correlation_store_failed", "message_id": message_id, "error": str(e)}},
        )
        return False
    return updated > 0


def count_messages(db: Session, session_id: str) -> int:
    try:
        return db.query(func.count(ChatMessage.id)).filter(ChatMessage.session_id == session_id).scalar() or 0
    except SQLAlchemyError as e:
        raise StorageError(f"count_messages failed: {e}") from e


def delete_session_messages(db: Session, session_id: str) -> int:
    try:
        deleted = (
            db.query(ChatMessage).filter(ChatMessage.session_id == session_id).delete(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageError(f"delete_session_messages failed: {e}") from e

    logger.info(
        "Session messages deleted",
        extra={"context": {"event": "session_cleared", "session_id": session_id, "count": deleted}},
    )
    return deleted


def mark_suspicious(db: Session, message_id: int, suspicious: bool = True) -> bool:
    try:
        updated = (
            db.query(ChatMessage)
            .filter(ChatMessage.id == message_id)
            .update({ChatMessage.is_suspicious: suspicious}, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageError(f"mark_suspicious failed: {e}") from e
    return updated > 0


def serialize_for_poll(message: ChatMessage) -> dict:
    created_at = message.created_at
    return {
        "id": message.id,
        "text": html.escape(message.text),
        "kind": message.kind,
        "time": created_at.strftime("%H:%M") if created_at else "",
    }
