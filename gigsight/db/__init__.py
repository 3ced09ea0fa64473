"""
GigSight Database Module

Provides database models, operations, and connection management.
"""

from .connection import (
    configure_database, get_session, get_session_factory, get_engine,
    init_database, drop_database, is_database_available
)
from .models import (
    Base, MediaItem, Concert, ConcertArtist, Venue, Artist,
    MediaType, AnalysisStatus
)
from .operations import MediaOperations, ConcertOperations

__all__ = [
    'configure_database',
    'get_session',
    'get_session_factory',
    'get_engine',
    'init_database',
    'drop_database',
    'is_database_available',
    'MediaOperations',
    'ConcertOperations',
    # Models
    'Base',
    'MediaItem',
    'Concert',
    'ConcertArtist',
    'Venue',
    'Artist',
    'MediaType',
    'AnalysisStatus',
]
