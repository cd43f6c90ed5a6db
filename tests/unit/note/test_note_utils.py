"""Tests for note formatting helpers."""

from geonotes.core.modules.note.models import Note, Visibility
from geonotes.core.modules.note.utils import count_private_notes, format_note


def make_note(description: str, lat: float, lon: float, private: bool = False) -> Note:
    return Note(
        latitude=lat,
        longitude=lon,
        description=description,
        visibility=Visibility.PRIVATE if private else Visibility.PUBLIC,
        owner_id="u1" if private else None,
    )


class TestFormatNote:
    """Tests for format_note."""

    def test_public_note(self, mock_note):
        """Test that a public note is formatted without a suffix."""
        assert format_note(mock_note) == "Central Park (40.7829, -73.9654)"

    def test_private_note(self):
        """Test that a private note is marked as private."""
        formatted = format_note(make_note("Secret Tokyo spot", 35.6762, 139.6503, private=True))
        assert formatted == "Secret Tokyo spot (35.6762, 139.6503) - Private"


class TestCountPrivateNotes:
    """Tests for count_private_notes."""

    def test_counts_only_private_notes(self):
        """Test that only private notes are counted."""
        notes = [
            make_note("Public note 1", 40.7128, -74.0060),
            make_note("Private note 1", 51.5074, -0.1278, private=True),
            make_note("Private note 2", 48.8566, 2.3522, private=True),
        ]
        assert count_private_notes(notes) == 2

    def test_empty(self):
        """Test that an empty collection counts zero."""
        assert count_private_notes([]) == 0
