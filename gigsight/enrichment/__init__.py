"""
External metadata lookups for artists and venues.
"""

from .spotify import SpotifyClient, SpotifyArtist, AccessToken, TokenCache

__all__ = [
    'SpotifyClient',
    'SpotifyArtist',
    'AccessToken',
    'TokenCache',
]
