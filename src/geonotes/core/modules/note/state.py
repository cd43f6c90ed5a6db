"""Note lifecycle state machine."""

from geonotes.core.modules.note.models import NoteState
from geonotes.errors import InvalidTransitionError

# closed -> new is "reopen"; there is no terminal state
ALLOWED_TRANSITIONS: dict[NoteState, frozenset[NoteState]] = {
    NoteState.NEW: frozenset({NoteState.OPEN, NoteState.CLOSED}),
    NoteState.OPEN: frozenset({NoteState.CLOSED}),
    NoteState.CLOSED: frozenset({NoteState.NEW}),
}


def can_transition(current: NoteState, target: NoteState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: NoteState, target: NoteState) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(f"Cannot transition note from '{current}' to '{target}'")
