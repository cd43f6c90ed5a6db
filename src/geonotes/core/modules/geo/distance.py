import math

EARTH_RADIUS_METERS = 6_371_008.8  # IUGG mean radius
METERS_PER_DEGREE = 111_320.0  # Length of one degree of latitude, rounded


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = phi2 - phi1
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    # Rounding can push a slightly above 1 for antipodal points
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(a))


def bounding_box(lat: float, lon: float, radius_meters: float) -> tuple[float, float, float, float] | None:
    """Latitude/longitude box enclosing the spherical cap around a point.

    Returns (min_lat, max_lat, min_lon, max_lon) in degrees. Longitudes may fall
    outside [-180, 180] when the box crosses the antimeridian. When the cap contains
    a pole the full band (-180, 180) is returned. Returns None when the cap covers
    the whole sphere.
    """
    angular = radius_meters / EARTH_RADIUS_METERS
    if angular >= math.pi:
        return None

    phi = math.radians(lat)
    min_phi = phi - angular
    max_phi = phi + angular
    min_lat = math.degrees(max(min_phi, -math.pi / 2))
    max_lat = math.degrees(min(max_phi, math.pi / 2))

    if min_phi <= -math.pi / 2 or max_phi >= math.pi / 2:
        return min_lat, max_lat, -180.0, 180.0

    d_lambda = math.asin(min(1.0, math.sin(angular) / math.cos(phi)))
    d_lon = math.degrees(d_lambda)
    if d_lon >= 180.0:
        return min_lat, max_lat, -180.0, 180.0
    return min_lat, max_lat, lon - d_lon, lon + d_lon
