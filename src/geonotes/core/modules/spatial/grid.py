"""Uniform latitude/longitude grid for radius queries.

Cells are square in degrees. A query box crossing longitude 180 is split
into two longitude ranges so cells on both sides are enumerated.
Candidates from the enumerated cells are always filtered with the exact
haversine distance.
"""

import math
from collections.abc import Iterator
from uuid import UUID

from geonotes.core.modules.geo.distance import METERS_PER_DEGREE, bounding_box, haversine_meters

Cell = tuple[int, int]  # (row, column)

# Widens cell enumeration so points exactly on a box edge are never missed
_EDGE_EPSILON_DEGREES = 1e-9


class GridIndex:
    def __init__(self, cell_size_meters: float) -> None:
        if cell_size_meters <= 0:
            raise ValueError("cell_size_meters must be positive")
        self.cell_size_meters = cell_size_meters
        self.cell_degrees = min(cell_size_meters / METERS_PER_DEGREE, 360.0)
        self._rows = max(1, math.ceil(180.0 / self.cell_degrees))
        self._columns = max(1, math.ceil(360.0 / self.cell_degrees))
        self._cells: dict[Cell, set[UUID]] = {}
        self._entries: dict[UUID, tuple[float, float, Cell]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, note_id: object) -> bool:
        return note_id in self._entries

    @property
    def occupied_cells(self) -> int:
        return len(self._cells)

    def _row(self, lat: float) -> int:
        row = math.floor((lat + 90.0) / self.cell_degrees)
        return min(max(row, 0), self._rows - 1)

    def _column(self, lon: float) -> int:
        column = math.floor((lon + 180.0) / self.cell_degrees)
        return min(max(column, 0), self._columns - 1)

    def _column_ranges(self, min_lon: float, max_lon: float) -> list[tuple[int, int]]:
        """Inclusive column ranges covering [min_lon, max_lon], split at the antimeridian."""
        if max_lon - min_lon >= 360.0:
            return [(0, self._columns - 1)]
        min_lon -= _EDGE_EPSILON_DEGREES
        max_lon += _EDGE_EPSILON_DEGREES
        if min_lon < -180.0:
            spans = [(min_lon + 360.0, 180.0), (-180.0, max_lon)]
        elif max_lon > 180.0:
            spans = [(min_lon, 180.0), (-180.0, max_lon - 360.0)]
        else:
            spans = [(min_lon, max_lon)]
        return [(self._column(lo), self._column(hi)) for lo, hi in spans if lo <= hi]

    def cell_of(self, lat: float, lon: float) -> Cell:
        return self._row(lat), self._column(lon)

    def get(self, note_id: UUID) -> tuple[float, float] | None:
        entry = self._entries.get(note_id)
        if entry is None:
            return None
        return entry[0], entry[1]

    def insert(self, note_id: UUID, lat: float, lon: float) -> None:
        """Add a point. Inserting an existing id moves it."""
        if note_id in self._entries:
            self.move(note_id, lat, lon)
            return
        cell = self.cell_of(lat, lon)
        self._cells.setdefault(cell, set()).add(note_id)
        self._entries[note_id] = (lat, lon, cell)

    def remove(self, note_id: UUID) -> bool:
        """Remove a point. Returns False if it was not indexed."""
        entry = self._entries.pop(note_id, None)
        if entry is None:
            return False
        cell = entry[2]
        bucket = self._cells[cell]
        bucket.discard(note_id)
        if not bucket:
            del self._cells[cell]
        return True

    def move(self, note_id: UUID, lat: float, lon: float) -> None:
        entry = self._entries.get(note_id)
        if entry is None:
            self.insert(note_id, lat, lon)
            return
        cell = self.cell_of(lat, lon)
        if cell != entry[2]:
            self.remove(note_id)
            self._cells.setdefault(cell, set()).add(note_id)
        self._entries[note_id] = (lat, lon, cell)

    def _candidate_cells(self, lat: float, lon: float, radius_meters: float) -> Iterator[Cell]:
        box = bounding_box(lat, lon, radius_meters)
        if box is None:
            yield from list(self._cells)
            return

        min_lat, max_lat, min_lon, max_lon = box
        row_lo = self._row(min_lat - _EDGE_EPSILON_DEGREES)
        row_hi = self._row(max_lat + _EDGE_EPSILON_DEGREES)

        column_ranges = self._column_ranges(min_lon, max_lon)
        box_cells = (row_hi - row_lo + 1) * sum(hi - lo + 1 for lo, hi in column_ranges)

        # Scanning occupied cells is cheaper than enumerating a mostly empty box
        if box_cells > len(self._cells):
            for cell in list(self._cells):
                row, column = cell
                if row_lo <= row <= row_hi and any(lo <= column <= hi for lo, hi in column_ranges):
                    yield cell
            return

        seen: set[Cell] = set()
        for row in range(row_lo, row_hi + 1):
            for lo, hi in column_ranges:
                for column in range(lo, hi + 1):
                    cell = (row, column)
                    if cell in self._cells and cell not in seen:
                        seen.add(cell)
                        yield cell

    def nearby(self, lat: float, lon: float, radius_meters: float) -> list[tuple[UUID, float]]:
        """Ids within radius_meters of the point with their distances, closest first."""
        matches: list[tuple[UUID, float]] = []
        for cell in self._candidate_cells(lat, lon, radius_meters):
            for note_id in self._cells[cell]:
                point_lat, point_lon, _ = self._entries[note_id]
                distance = haversine_meters(lat, lon, point_lat, point_lon)
                if distance <= radius_meters:
                    matches.append((note_id, distance))
        matches.sort(key=lambda match: (match[1], str(match[0])))
        return matches

    def query_radius(self, lat: float, lon: float, radius_meters: float) -> list[UUID]:
        return [note_id for note_id, _ in self.nearby(lat, lon, radius_meters)]
