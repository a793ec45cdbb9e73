from typing import Optional

from pydantic import BaseModel, Field


class SessionBootstrapResponse(BaseModel):
    success: bool
    session_id: str
    name: Optional[str] = None
    nonce: str


class SendMessageRequest(BaseModel):
    message: str = ""
    session_id: str
    nonce: Optional[str] = None


class SendMessageResponse(BaseModel):
    success: bool
    automated: bool = False
    session_id: str
    message: Optional[str] = None


class PollRequest(BaseModel):
    session_id: str
    after_message_id: int = Field(default=0, ge=0)
    nonce: Optional[str] = None


class MessageOut(BaseModel):
    id: int
    text: str
    kind: str
    time: str


class PollResponse(BaseModel):
    success: bool
    messages: list[MessageOut] = []


class SetNameRequest(BaseModel):
    name: str = ""
    nonce: Optional[str] = None


class SetNameResponse(BaseModel):
    success: bool
    session_id: str
    name: str
