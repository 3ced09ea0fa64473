"""
Analysis pipeline orchestration.
"""

from .media_analysis import (
    MediaAnalysisService, get_retry_after, get_error_message,
    build_status_payload, thumbnail_path_for
)

__all__ = [
    'MediaAnalysisService',
    'get_retry_after',
    'get_error_message',
    'build_status_payload',
    'thumbnail_path_for',
]
