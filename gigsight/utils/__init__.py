"""
Shared utilities for GigSight.
"""

from .geo import GeoPoint, haversine_km, parse_iso6709, is_valid_coordinate
from .logging import StructuredLogger, setup_console_logging

__all__ = [
    'GeoPoint',
    'haversine_km',
    'parse_iso6709',
    'is_valid_coordinate',
    'StructuredLogger',
    'setup_console_logging',
]
