"""Tests for SpatialService."""

from uuid import uuid4

import pytest

from geonotes.app import App
from geonotes.core.modules.note.models import Note
from geonotes.errors import ValidationError


class TestSpatialService:
    """Tests for SpatialService."""

    async def test_index_rebuilt_on_start(self, config, storage):
        """Test that notes already in storage are queryable after startup."""
        notes = [
            Note(latitude=40.7128, longitude=-74.0060, description="Stored before start"),
            Note(latitude=51.5074, longitude=-0.1278, description="London"),
        ]
        for note in notes:
            await storage.notes.insert(note.to_mongo())

        app = App(config, storage)
        async with app.lifespan():
            spatial = app.core.services.spatial
            assert len(spatial.grid) == 2
            assert spatial.query_radius(40.7128, -74.0060, 100) == [notes[0].id]

    async def test_rebuild_replaces_index(self, services, storage):
        """Test that rebuild reloads the index from storage."""
        services.spatial.insert(uuid4(), 0, 0)
        await services.spatial.rebuild()
        assert len(services.spatial.grid) == 0

    async def test_cell_size_from_config(self, services, config):
        """Test that the grid uses the configured cell size."""
        assert services.spatial.grid.cell_size_meters == config.spatial_cell_size_meters

    async def test_remove_is_idempotent(self, services):
        """Test that removing an unknown note is a no-op."""
        note_id = uuid4()
        services.spatial.insert(note_id, 0, 0)
        services.spatial.remove(note_id)
        services.spatial.remove(note_id)
        assert services.spatial.query_radius(0, 0, 100) == []

    @pytest.mark.parametrize(
        ("lat", "lon", "radius", "message"),
        [
            (91, 0, 100, "Latitude"),
            (0, -181, 100, "Longitude"),
            (0, 0, -5, "must not be negative"),
            (0, 0, 50_001, "at most"),
        ],
    )
    async def test_invalid_query_rejected(self, services, lat, lon, radius, message):
        """Test that invalid queries raise ValidationError."""
        with pytest.raises(ValidationError, match=message):
            services.spatial.nearby(lat, lon, radius)
