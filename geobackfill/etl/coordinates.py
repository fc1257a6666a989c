"""Coordinate sanity checks, bounds checks and deterministic synthesis."""

import math
from typing import Any, Optional

from geobackfill.models import BoundingBox, Coordinate

COORDINATE_PRECISION = 8
SEED_PRIME = 7919

_UINT32_MASK = 0xFFFFFFFF
_INT32_SIGN = 0x80000000
_SEED_SCALE = 2 ** 31
_MAX_SEED = math.nextafter(1.0, 0.0)


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def make_coordinate(lat: Any, lng: Any) -> Optional[Coordinate]:
    """Build a rounded coordinate, or None if the pair is not a real position."""
    lat_value = _to_float(lat)
    lng_value = _to_float(lng)
    if lat_value is None or lng_value is None:
        return None
    if not (math.isfinite(lat_value) and math.isfinite(lng_value)):
        return None
    if not (-90 <= lat_value <= 90 and -180 <= lng_value <= 180):
        return None
    return Coordinate(
        lat=round(lat_value, COORDINATE_PRECISION),
        lng=round(lng_value, COORDINATE_PRECISION),
    )


def has_coordinates(value: Any) -> bool:
    """True when a stored ``coordinates`` value holds two finite numbers."""
    if not isinstance(value, dict):
        return False
    for key in ("lat", "lng"):
        number = value.get(key)
        if isinstance(number, bool) or not isinstance(number, (int, float)):
            return False
        if not math.isfinite(number):
            return False
    return True


def in_bounds(coordinate: Coordinate, bounds: BoundingBox) -> bool:
    return bounds.contains(coordinate)


def _to_int32(value: int) -> int:
    value &= _UINT32_MASK
    if value & _INT32_SIGN:
        value -= 1 << 32
    return value


def address_hash(address: str) -> int:
    """Signed 32-bit ``h = h * 31 + unit`` over the UTF-16 code units of ``address``."""
    data = address.encode("utf-16-le")
    value = 0
    for index in range(0, len(data), 2):
        unit = data[index] | (data[index + 1] << 8)
        value = (value * 31 + unit) & _UINT32_MASK
    return _to_int32(value)


def synthesize_coordinate(address: str, bounds: BoundingBox) -> Coordinate:
    """Map an address to a stable pseudo-random point inside ``bounds``.

    The same string always lands on the same point, so duplicate or re-run
    addresses that never geocode stay put instead of scattering.
    """
    value = address_hash(address)
    seed1 = min(abs(value) / _SEED_SCALE, _MAX_SEED)
    seed2 = min(abs(_to_int32(value * SEED_PRIME)) / _SEED_SCALE, _MAX_SEED)

    lat = bounds.min_lat + seed1 * (bounds.max_lat - bounds.min_lat)
    lng = bounds.min_lng + seed2 * (bounds.max_lng - bounds.min_lng)
    return Coordinate(
        lat=round(lat, COORDINATE_PRECISION),
        lng=round(lng, COORDINATE_PRECISION),
    )
