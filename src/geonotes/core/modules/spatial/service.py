from uuid import UUID

import structlog

from geonotes.core.core import Service
from geonotes.core.modules.geo.validators import validate_coordinates, validate_radius
from geonotes.core.modules.spatial.grid import GridIndex
from geonotes.core.storage.base import Storage

logger = structlog.get_logger(__name__)


class SpatialService(Service):
    """In-memory grid index over note coordinates.

    The index is derived data: it is rebuilt from note storage on startup and
    kept current by NoteService, which updates it right after each committed
    coordinate change. All index operations are synchronous, so no other task
    can observe a half-applied update.
    """

    def __init__(self, storage: Storage) -> None:
        super().__init__(storage)
        self._grid: GridIndex | None = None

    async def on_start(self) -> None:
        await self.rebuild()

    @property
    def grid(self) -> GridIndex:
        if self._grid is None:
            self._grid = GridIndex(self.core.config.spatial_cell_size_meters)
        return self._grid

    async def rebuild(self) -> None:
        """Reload all note coordinates from storage."""
        grid = GridIndex(self.core.config.spatial_cell_size_meters)
        async for doc in self.storage.notes.iter_locations():
            grid.insert(doc["_id"], doc["latitude"], doc["longitude"])
        self._grid = grid
        logger.debug("spatial_index_rebuilt", notes=len(grid), cells=grid.occupied_cells)

    def insert(self, note_id: UUID, lat: float, lon: float) -> None:
        self.grid.insert(note_id, lat, lon)

    def move(self, note_id: UUID, lat: float, lon: float) -> None:
        self.grid.move(note_id, lat, lon)

    def remove(self, note_id: UUID) -> None:
        """Remove a note from the index. Idempotent."""
        self.grid.remove(note_id)

    def nearby(self, lat: float, lon: float, radius_meters: float) -> list[tuple[UUID, float]]:
        """Note ids within the radius with distances in meters, closest first."""
        lat, lon = validate_coordinates(lat, lon)
        radius_meters = validate_radius(radius_meters, self.core.config.max_query_radius_meters)
        return self.grid.nearby(lat, lon, radius_meters)

    def query_radius(self, lat: float, lon: float, radius_meters: float) -> list[UUID]:
        return [note_id for note_id, _ in self.nearby(lat, lon, radius_meters)]
