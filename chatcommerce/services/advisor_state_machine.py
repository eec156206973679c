from enum import Enum
from typing import Optional


class AdvisorState(str, Enum):
    NONE = "NONE"
    LISTENING = "LISTENING"
    ACTIVE = "ACTIVA"
    CLOSED = "CERRADA"


VALID_TRANSITIONS = {
    AdvisorState.NONE: [AdvisorState.LISTENING, AdvisorState.ACTIVE],
    AdvisorState.LISTENING: [AdvisorState.ACTIVE],
    AdvisorState.ACTIVE: [AdvisorState.LISTENING],
    AdvisorState.CLOSED: [AdvisorState.LISTENING, AdvisorState.ACTIVE],
}


class InvalidAdvisorTransition(Exception):
    def __init__(self, from_state: AdvisorState, to_state: AdvisorState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def parse_state(raw: Optional[str]) -> AdvisorState:
    """Stored value to state; unknown or blank values count as LISTENING."""
    value = (raw or "").strip().upper()
    if not value:
        return AdvisorState.LISTENING
    for state in AdvisorState:
        if state.value == value:
            return state
    return AdvisorState.LISTENING


def can_transition(from_state: AdvisorState, to_state: AdvisorState) -> bool:
    """Check if transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, [])


def transition(from_state: AdvisorState, to_state: AdvisorState) -> AdvisorState:
    """Perform state transition. Raises InvalidAdvisorTransition if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidAdvisorTransition(from_state, to_state)
    return to_state


def take_over(current_state: AdvisorState) -> AdvisorState:
    """A human operator owns the conversation."""
    return transition(current_state, AdvisorState.ACTIVE)


def release(current_state: AdvisorState) -> AdvisorState:
    """Back to the bot; messages keep being transcribed."""
    return transition(current_state, AdvisorState.LISTENING)


def start_listening(current_state: AdvisorState) -> AdvisorState:
    return transition(current_state, AdvisorState.LISTENING)
