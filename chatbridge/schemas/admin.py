from typing import Optional

from pydantic import BaseModel

from chatbridge.schemas.message import MessageOut


class ChannelTestResponse(BaseModel):
    success: bool
    message: str
    error: Optional[str] = None


class SessionHistoryResponse(BaseModel):
    session_id: str
    name: str
    count: int
    messages: list[MessageOut]


class SessionClearResponse(BaseModel):
    session_id: str
    deleted: int


class SuspiciousRequest(BaseModel):
    suspicious: bool = True


class SuspiciousResponse(BaseModel):
    message_id: int
    suspicious: bool
