"""
Multi-signal concert matching.
"""

from .concert_matcher import (
    ConcertMatcher, MatchSignals, ConcertRecord, VenueRecord, ArtistCredit,
    SignalBreakdown, ConcertMatch, MatchResult, calculate_confidence,
    dates_match, strings_match, normalize_name
)

__all__ = [
    'ConcertMatcher',
    'MatchSignals',
    'ConcertRecord',
    'VenueRecord',
    'ArtistCredit',
    'SignalBreakdown',
    'ConcertMatch',
    'MatchResult',
    'calculate_confidence',
    'dates_match',
    'strings_match',
    'normalize_name',
]
