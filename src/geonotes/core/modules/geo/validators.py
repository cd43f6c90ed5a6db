"""Validation of coordinates, descriptions and user data.

All validators are pure functions that raise ValidationError on bad input
and return the normalized value otherwise.
"""

import json
import math
from typing import Any

from geonotes.errors import ValidationError

MIN_LATITUDE = -90.0
MAX_LATITUDE = 90.0
MIN_LONGITUDE = -180.0
MAX_LONGITUDE = 180.0


def _validate_number(name: str, value: object) -> float:
    # bool is a subclass of int
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValidationError(f"{name} must be a number")
    result = float(value)
    if not math.isfinite(result):
        raise ValidationError(f"{name} must be a finite number")
    return result


def validate_latitude(value: object) -> float:
    latitude = _validate_number("Latitude", value)
    if not MIN_LATITUDE <= latitude <= MAX_LATITUDE:
        raise ValidationError(f"Latitude must be between {MIN_LATITUDE} and {MAX_LATITUDE}, got {latitude}")
    return latitude


def validate_longitude(value: object) -> float:
    longitude = _validate_number("Longitude", value)
    if not MIN_LONGITUDE <= longitude <= MAX_LONGITUDE:
        raise ValidationError(f"Longitude must be between {MIN_LONGITUDE} and {MAX_LONGITUDE}, got {longitude}")
    return longitude


def validate_coordinates(latitude: object, longitude: object) -> tuple[float, float]:
    return validate_latitude(latitude), validate_longitude(longitude)


def validate_description(value: object, max_length: int) -> str:
    """Validate note description: non-empty after stripping, bounded length.

    Returns the stripped description.
    """
    if not isinstance(value, str):
        raise ValidationError("Description must be a string")
    description = value.strip()
    if not description:
        raise ValidationError("Description must not be empty")
    if len(description) > max_length:
        raise ValidationError(f"Description must be at most {max_length} characters, got {len(description)}")
    return description


def validate_user_data(value: object, max_bytes: int) -> dict[str, Any]:
    """Check shape and size of the opaque user_data document.

    Contents are never inspected beyond being JSON-serializable.
    """
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError("User data must be a JSON object")
    try:
        encoded = json.dumps(value, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"User data must be JSON-serializable: {e}") from None
    size = len(encoded.encode("utf-8"))
    if size > max_bytes:
        raise ValidationError(f"User data must be at most {max_bytes} bytes when encoded, got {size}")
    return value


def validate_radius(value: object, max_radius: float) -> float:
    radius = _validate_number("Radius", value)
    if radius < 0:
        raise ValidationError("Radius must not be negative")
    if radius > max_radius:
        raise ValidationError(f"Radius must be at most {max_radius} meters, got {radius}")
    return radius
