"""
Capture metadata and frame extraction for photos and videos.
"""

from .exif import MetadataExtractor, ExifMetadata
from .ffmpeg import (
    FrameSampler, VideoMetadata, frame_timestamps, parse_probe_output,
    parse_creation_time
)

__all__ = [
    'MetadataExtractor',
    'ExifMetadata',
    'FrameSampler',
    'VideoMetadata',
    'frame_timestamps',
    'parse_probe_output',
    'parse_creation_time',
]
