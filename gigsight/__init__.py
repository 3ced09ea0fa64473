"""
GigSight: concert media identification pipeline

Works out which of a user's concerts an uploaded photo or video belongs to,
combining capture metadata (timestamp, GPS) with visual cues read by a
vision-capable LLM.
"""

__version__ = "0.1.0"
__author__ = "GigSight Team"

from .config import load_config

__all__ = [
    "load_config",
]
