"""Shared pytest fixtures."""

from uuid import UUID

import pytest

from geonotes.app import App
from geonotes.config import Config
from geonotes.core.modules.note.models import Note, NoteState, Visibility
from geonotes.core.storage.memory import MemoryStorage


@pytest.fixture
def config():
    """Configuration isolated from environment and .env files."""
    return Config(
        _env_file=None,
        quota_limit=1,
        spatial_cell_size_meters=1000.0,
        bulk_max_items=50,
        bulk_concurrency=4,
    )


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
async def app(config, storage):
    """Started application on in-memory storage."""
    application = App(config, storage)
    async with application.lifespan():
        yield application


@pytest.fixture
def services(app):
    return app.core.services


@pytest.fixture
def mock_note():
    """Create a mock note for testing."""
    return Note(
        id=UUID("12345678-1234-5678-1234-567812345678"),
        latitude=40.7829,
        longitude=-73.9654,
        description="Central Park",
        visibility=Visibility.PUBLIC,
        state=NoteState.NEW,
    )
