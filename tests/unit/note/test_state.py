"""Tests for the note lifecycle state machine."""

import itertools

import pytest

from geonotes.core.modules.note.models import NoteState
from geonotes.core.modules.note.state import ALLOWED_TRANSITIONS, can_transition, ensure_transition
from geonotes.errors import InvalidTransitionError

ALLOWED = {
    (NoteState.NEW, NoteState.OPEN),
    (NoteState.NEW, NoteState.CLOSED),
    (NoteState.OPEN, NoteState.CLOSED),
    (NoteState.CLOSED, NoteState.NEW),
}


class TestStateMachine:
    """Tests for the note lifecycle state machine."""

    def test_every_state_has_outgoing_edges(self):
        """Test that there is no terminal state."""
        for state in NoteState:
            assert ALLOWED_TRANSITIONS[state]

    def test_allowed_pairs(self):
        """Test that exactly the allowed edges are accepted."""
        for current, target in itertools.product(NoteState, repeat=2):
            assert can_transition(current, target) == ((current, target) in ALLOWED)

    def test_no_self_edges(self):
        """Test that moving to the current state is rejected."""
        for state in NoteState:
            with pytest.raises(InvalidTransitionError):
                ensure_transition(state, state)

    def test_only_closed_leads_to_new(self):
        """Test that new is reachable only from closed."""
        for state in NoteState:
            assert can_transition(state, NoteState.NEW) == (state == NoteState.CLOSED)

    def test_rejected_edge_message(self):
        """Test that the error names both states."""
        with pytest.raises(InvalidTransitionError, match="from 'open' to 'new'"):
            ensure_transition(NoteState.OPEN, NoteState.NEW)
