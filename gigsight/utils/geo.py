"""
Geographic helpers: great-circle distance and ISO 6709 coordinate strings.
"""

import logging
from dataclasses import dataclass
from math import radians, sin, cos, atan2, sqrt
from typing import List, Optional

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair, optionally with altitude in metres."""
    lat: float
    lng: float
    altitude: Optional[float] = None


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Great-circle distance between two points in kilometres.

    Args:
        lat1, lng1: First point in decimal degrees
        lat2, lng2: Second point in decimal degrees

    Returns:
        Distance in kilometres
    """
    d_lat = radians(lat2 - lat1)
    d_lng = radians(lng2 - lng1)
    a = (sin(d_lat / 2) ** 2
         + cos(radians(lat1)) * cos(radians(lat2)) * sin(d_lng / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * atan2(sqrt(a), sqrt(1 - a))


def is_valid_coordinate(lat: Optional[float], lng: Optional[float]) -> bool:
    """True when both values are present and inside the WGS84 ranges."""
    if lat is None or lng is None:
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def parse_iso6709(value: Optional[str]) -> Optional[GeoPoint]:
    """
    Parse an ISO 6709 decimal-degree string such as ``+35.6895+139.6917/``
    or ``-33.8688+151.2093+012.500/``.

    Segments are delimited by their sign characters rather than by fixed
    widths, since the number of integer digits varies.

    Returns:
        GeoPoint, or None if the string is malformed or out of range
    """
    if not value:
        return None

    text = value.strip().rstrip('/')
    # Some writers append a CRS suffix, e.g. "+12.34+056.78CRSWGS_84/"
    crs = text.find('CRS')
    if crs != -1:
        text = text[:crs]

    signs: List[int] = [i for i, ch in enumerate(text) if ch in '+-']
    if len(signs) < 2 or signs[0] != 0:
        return None

    bounds = signs + [len(text)]
    segments = [text[bounds[i]:bounds[i + 1]] for i in range(len(signs))]

    try:
        lat = float(segments[0])
        lng = float(segments[1])
        altitude = float(segments[2]) if len(segments) > 2 else None
    except ValueError:
        logger.debug(f"Unparseable ISO 6709 string: {value!r}")
        return None

    if not is_valid_coordinate(lat, lng):
        logger.debug(f"ISO 6709 coordinates out of range: {value!r}")
        return None

    return GeoPoint(lat=lat, lng=lng, altitude=altitude)
