import pytest

from chatcommerce.services.advisor_state_machine import (
    AdvisorState,
    InvalidAdvisorTransition,
    can_transition,
    parse_state,
    release,
    start_listening,
    take_over,
    transition,
)


class TestValidTransitions:
    def test_none_to_active(self):
        assert transition(AdvisorState.NONE, AdvisorState.ACTIVE) == AdvisorState.ACTIVE

    def test_listening_to_active(self):
        assert take_over(AdvisorState.LISTENING) == AdvisorState.ACTIVE

    def test_active_to_listening(self):
        assert release(AdvisorState.ACTIVE) == AdvisorState.LISTENING

    def test_closed_can_be_reopened(self):
        assert take_over(AdvisorState.CLOSED) == AdvisorState.ACTIVE

    def test_start_listening(self):
        assert start_listening(AdvisorState.NONE) == AdvisorState.LISTENING


class TestInvalidTransitions:
    def test_active_to_active(self):
        with pytest.raises(InvalidAdvisorTransition):
            take_over(AdvisorState.ACTIVE)

    def test_listening_release(self):
        with pytest.raises(InvalidAdvisorTransition):
            release(AdvisorState.LISTENING)

    def test_can_transition_false(self):
        assert can_transition(AdvisorState.LISTENING, AdvisorState.NONE) is False


class TestParseState:
    def test_stored_values(self):
        assert parse_state("ACTIVA") == AdvisorState.ACTIVE
        assert parse_state(" cerrada ") == AdvisorState.CLOSED
        assert parse_state("LISTENING") == AdvisorState.LISTENING

    @pytest.mark.parametrize("raw", [None, "", "whatever"])
    def test_unknown_counts_as_listening(self, raw):
        assert parse_state(raw) == AdvisorState.LISTENING
