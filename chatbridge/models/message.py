from enum import Enum

from sqlalchemy import JSON, BigInteger, Boolean, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from chatbridge.database import Base


class MessageKind(str, Enum):
    VISITOR = "visitor"
    CHANNEL_REPLY = "channel-reply"
    SYSTEM_NOTICE = "system-notice"


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(100), nullable=False, index=True)
    text = Column(Text, nullable=False)
    kind = Column(String(20), nullable=False, default=MessageKind.VISITOR.value, index=True)
    sender_info = Column(JSON().with_variant(JSONB(), "postgresql"))
    correlation_id = Column(BigInteger, index=True)
    ip_hash = Column(String(64), index=True)
    is_suspicious = Column(Boolean, default=False)
    is_automated = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_chat_messages_session_created", "session_id", "created_at"),)

    @property
    def message_kind(self) -> MessageKind:
        return MessageKind(self.kind)
