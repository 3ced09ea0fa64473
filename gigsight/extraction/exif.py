"""
EXIF metadata extraction for photos.

Reads capture time, GPS position and camera identity from the raw image
bytes. Metadata is enrichment only: anything unreadable yields None.
"""

import io
import re
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

import exifread

from ..utils.geo import is_valid_coordinate

logger = logging.getLogger(__name__)

# Capture time tags, most specific first
DATE_TAGS = (
    'EXIF DateTimeOriginal',
    'EXIF DateTimeDigitized',
    'Image DateTime',
)

_OFFSET_PATTERN = re.compile(r'^([+-])(\d{2}):?(\d{2})$')


@dataclass
class ExifMetadata:
    """Capture metadata read from a photo."""
    taken_at: Optional[datetime] = None  # naive UTC
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class MetadataExtractor:
    """Extracts capture metadata from photo EXIF tags."""

    def extract(self, data: bytes) -> Optional[ExifMetadata]:
        """
        Read EXIF metadata from image bytes.

        Args:
            data: Raw image bytes

        Returns:
            ExifMetadata, or None if the image carries no usable EXIF
        """
        if not data:
            return None

        try:
            tags = exifread.process_file(io.BytesIO(data), details=False)
        except Exception as e:
            logger.warning(f"EXIF extraction failed: {e}")
            return None

        if not tags:
            return None

        try:
            metadata = ExifMetadata(
                taken_at=self._get_taken_at(tags),
                camera_make=self._get_exif_value(tags, 'Image Make'),
                camera_model=self._get_exif_value(tags, 'Image Model'),
            )

            lat = self._get_gps_coordinate(tags, 'GPS GPSLatitude', 'GPS GPSLatitudeRef')
            lng = self._get_gps_coordinate(tags, 'GPS GPSLongitude', 'GPS GPSLongitudeRef')
            if is_valid_coordinate(lat, lng):
                metadata.latitude = lat
                metadata.longitude = lng
            elif lat is not None or lng is not None:
                logger.debug(f"Discarding out-of-range EXIF GPS: {lat}, {lng}")
        except Exception as e:
            logger.warning(f"Unreadable EXIF tags: {e}")
            return None

        return metadata

    def _get_taken_at(self, tags: Dict[str, Any]) -> Optional[datetime]:
        for key in DATE_TAGS:
            value = self._get_exif_value(tags, key)
            if not value:
                continue
            try:
                taken_at = datetime.strptime(value[:19], '%Y:%m:%d %H:%M:%S')
            except ValueError:
                logger.debug(f"Unparseable {key}: {value!r}")
                continue

            offset = self._get_utc_offset(tags)
            if offset is not None:
                taken_at -= offset
            return taken_at
        return None

    def _get_utc_offset(self, tags: Dict[str, Any]) -> Optional[timedelta]:
        value = self._get_exif_value(tags, 'EXIF OffsetTimeOriginal')
        if not value:
            return None
        match = _OFFSET_PATTERN.match(value)
        if not match:
            return None
        sign, hours, minutes = match.groups()
        offset = timedelta(hours=int(hours), minutes=int(minutes))
        return -offset if sign == '-' else offset

    @staticmethod
    def _get_exif_value(tags: Dict[str, Any], key: str) -> Optional[str]:
        """Get EXIF value as string"""
        if key in tags:
            value = str(tags[key]).strip().strip('\x00')
            return value or None
        return None

    @staticmethod
    def _ratio_to_float(ratio) -> float:
        if hasattr(ratio, 'num') and hasattr(ratio, 'den'):
            if not ratio.den:
                raise ValueError("zero denominator in EXIF ratio")
            return float(ratio.num) / float(ratio.den)
        return float(ratio)

    def _get_gps_coordinate(self, tags: Dict[str, Any], coord_key: str, ref_key: str) -> Optional[float]:
        """Extract GPS coordinate from EXIF as decimal degrees"""
        if coord_key not in tags:
            return None

        coord = tags[coord_key].values
        if len(coord) < 3:
            return None

        degrees = self._ratio_to_float(coord[0])
        minutes = self._ratio_to_float(coord[1])
        seconds = self._ratio_to_float(coord[2])
        decimal = degrees + minutes / 60.0 + seconds / 3600.0

        # Apply reference (N/S for latitude, E/W for longitude)
        ref = self._get_exif_value(tags, ref_key)
        if ref and ref.upper() in ('S', 'W'):
            decimal = -decimal

        return decimal
