from chatbridge.models.message import ChatMessage, MessageKind

__all__ = [
    "ChatMessage",
    "MessageKind",
]
