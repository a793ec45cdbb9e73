from enum import Enum


class RoutingState(str, Enum):
    RECEIVED = "received"
    RATE_CHECKED = "rate_checked"
    CLASSIFIED = "classified"
    AUTOMATION_ATTEMPTED = "automation_attempted"
    AUTOMATION_SUCCEEDED = "automation_succeeded"
    AUTOMATION_FAILED = "automation_failed"
    HUMAN_NOTIFIED = "human_notified"
    DONE = "done"
    REJECTED = "rejected"


VALID_TRANSITIONS = {
    RoutingState.RECEIVED: [RoutingState.RATE_CHECKED, RoutingState.REJECTED],
    RoutingState.RATE_CHECKED: [RoutingState.CLASSIFIED, RoutingState.REJECTED],
    RoutingState.CLASSIFIED: [
        RoutingState.AUTOMATION_ATTEMPTED,
        RoutingState.HUMAN_NOTIFIED,
        RoutingState.REJECTED,
    ],
    RoutingState.AUTOMATION_ATTEMPTED: [RoutingState.AUTOMATION_SUCCEEDED, RoutingState.AUTOMATION_FAILED],
    RoutingState.AUTOMATION_SUCCEEDED: [RoutingState.DONE],
    RoutingState.AUTOMATION_FAILED: [RoutingState.HUMAN_NOTIFIED],
    RoutingState.HUMAN_NOTIFIED: [RoutingState.DONE, RoutingState.REJECTED],
    RoutingState.DONE: [],
    RoutingState.REJECTED: [],
}

TERMINAL_STATES = frozenset({RoutingState.DONE, RoutingState.REJECTED})


class InvalidTransitionError(Exception):
    def __init__(self, from_state: RoutingState, to_state: RoutingState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: RoutingState, to_state: RoutingState) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: RoutingState, to_state: RoutingState) -> RoutingState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def is_terminal(state: RoutingState) -> bool:
    return state in TERMINAL_STATES
