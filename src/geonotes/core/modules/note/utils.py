from collections.abc import Iterable

from geonotes.core.modules.note.models import Note


def format_note(note: Note) -> str:
    """Human-readable one-line summary, e.g. "Central Park (40.7829, -73.9654) - Private"."""
    text = f"{note.description} ({note.latitude}, {note.longitude})"
    if note.is_private:
        text += " - Private"
    return text


def count_private_notes(notes: Iterable[Note]) -> int:
    return sum(1 for note in notes if note.is_private)
