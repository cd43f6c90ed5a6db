"""Tests for great-circle distance helpers."""

import math

import pytest

from geonotes.core.modules.geo.distance import EARTH_RADIUS_METERS, bounding_box, haversine_meters

ONE_DEGREE_METERS = EARTH_RADIUS_METERS * math.pi / 180


class TestHaversine:
    """Tests for haversine_meters."""

    def test_same_point_is_zero(self):
        """Test that the distance from a point to itself is zero."""
        assert haversine_meters(40.7128, -74.0060, 40.7128, -74.0060) == 0.0

    def test_one_degree_of_latitude(self):
        """Test that one degree of latitude is about 111 km."""
        assert haversine_meters(0, 0, 1, 0) == pytest.approx(ONE_DEGREE_METERS, rel=1e-9)

    def test_new_york_to_london(self):
        """Test a known long distance (~5570 km)."""
        distance = haversine_meters(40.7128, -74.0060, 51.5074, -0.1278)
        assert distance == pytest.approx(5_570_000, rel=0.005)

    def test_symmetric(self):
        """Test that distance does not depend on argument order."""
        a = haversine_meters(35.6762, 139.6503, -33.8688, 151.2093)
        b = haversine_meters(-33.8688, 151.2093, 35.6762, 139.6503)
        assert a == pytest.approx(b)

    def test_across_antimeridian(self):
        """Test that points on both sides of longitude 180 are close."""
        assert haversine_meters(0, 179.9, 0, -179.9) == pytest.approx(0.2 * ONE_DEGREE_METERS, rel=1e-6)

    def test_antipodal_points(self):
        """Test that antipodal points are half the circumference apart."""
        assert haversine_meters(0, 0, 0, 180) == pytest.approx(math.pi * EARTH_RADIUS_METERS)


class TestBoundingBox:
    """Tests for bounding_box."""

    def test_box_at_equator(self):
        """Test that a small box at the equator is symmetric around the point."""
        min_lat, max_lat, min_lon, max_lon = bounding_box(0, 0, ONE_DEGREE_METERS)
        assert min_lat == pytest.approx(-1)
        assert max_lat == pytest.approx(1)
        assert min_lon == pytest.approx(-1)
        assert max_lon == pytest.approx(1)

    def test_box_widens_with_latitude(self):
        """Test that longitude span grows away from the equator."""
        _, _, min_lon, max_lon = bounding_box(60, 0, ONE_DEGREE_METERS)
        assert max_lon - min_lon > 3.9

    def test_box_crossing_antimeridian_is_not_normalized(self):
        """Test that a box crossing the antimeridian keeps longitudes past 180."""
        _, _, min_lon, max_lon = bounding_box(0, 179.5, ONE_DEGREE_METERS)
        assert min_lon == pytest.approx(178.5)
        assert max_lon == pytest.approx(180.5)

    def test_box_containing_pole_spans_all_longitudes(self):
        """Test that a box containing a pole covers every longitude."""
        min_lat, max_lat, min_lon, max_lon = bounding_box(89.5, 10, ONE_DEGREE_METERS)
        assert max_lat == pytest.approx(90)
        assert min_lat == pytest.approx(88.5)
        assert (min_lon, max_lon) == (-180.0, 180.0)

    def test_whole_sphere_returns_none(self):
        """Test that a radius covering the whole sphere gives no box."""
        assert bounding_box(0, 0, math.pi * EARTH_RADIUS_METERS) is None

    def test_box_contains_points_on_the_circle(self):
        """Test that the farthest-east point of the cap lies inside the box."""
        lat, radius = 45.0, 50_000.0
        _, _, _, max_lon = bounding_box(lat, 0, radius)
        # Points at the box edge on the same latitude are at least radius away
        assert haversine_meters(lat, 0, lat, max_lon) >= radius - 1e-6
