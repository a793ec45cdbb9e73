from chatbridge.services.result import ErrorKind, Result, StorageError
from chatbridge.services.state_machine import (
    InvalidTransitionError,
    RoutingState,
    can_transition,
    transition,
)

__all__ = [
    "ErrorKind",
    "InvalidTransitionError",
    "Result",
    "RoutingState",
    "StorageError",
    "can_transition",
    "transition",
]
