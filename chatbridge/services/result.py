from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    RATE_LIMITED = "rate_limited"
    CHANNEL = "channel_error"
    MALFORMED_COMMAND = "malformed_command"
    CORRELATION_NOT_FOUND = "correlation_not_found"
    STORAGE = "storage_error"


class StorageError(Exception):
    """Conversation log read/write failed."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        if isinstance(code, ErrorKind):
            code = code.value
        return Result(ok=False, error=error, error_code=code)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

    def is_error(self, kind: ErrorKind) -> bool:
        return not self.ok and self.error_code == kind.value
