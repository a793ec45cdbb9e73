from chatbridge.schemas.message import (
    MessageOut,
    PollRequest,
    PollResponse,
    SendMessageRequest,
    SendMessageResponse,
    SessionBootstrapResponse,
    SetNameRequest,
    SetNameResponse,
)
from chatbridge.schemas.telegram import TelegramUpdate, TelegramWebhookResponse

__all__ = [
    "MessageOut",
    "PollRequest",
    "PollResponse",
    "SendMessageRequest",
    "SendMessageResponse",
    "SessionBootstrapResponse",
    "SetNameRequest",
    "SetNameResponse",
    "TelegramUpdate",
    "TelegramWebhookResponse",
]
