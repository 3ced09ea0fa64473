"""
Spotify artist metadata lookup.

Uses the client-credentials flow. The access token lives in an explicit
TokenCache owned by the client rather than in module state, and is
refreshed shortly before it expires.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Any, List, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import (
    ConfigurationError, RateLimitedError, UpstreamTimeoutError, UpstreamUnavailableError
)

logger = logging.getLogger(__name__)

TOKEN_URL = 'https://accounts.spotify.com/api/token'
API_BASE_URL = 'https://api.spotify.com/v1'
REFRESH_MARGIN_SECONDS = 60


@dataclass(frozen=True)
class AccessToken:
    """Bearer token and its absolute expiry (epoch seconds)"""
    token: str
    expires_at: float

    def is_fresh(self, now: float, margin: float = REFRESH_MARGIN_SECONDS) -> bool:
        return now < self.expires_at - margin


class TokenCache:
    """
    Thread-safe holder for one access token.

    ``get()`` returns the cached token while it is fresh and otherwise
    calls the fetcher, so concurrent callers share a single refresh.
    """

    def __init__(self, fetcher: Callable[[], AccessToken],
                 margin: float = REFRESH_MARGIN_SECONDS,
                 clock: Callable[[], float] = time.time):
        self._fetcher = fetcher
        self._margin = margin
        self._clock = clock
        self._token: Optional[AccessToken] = None
        self._lock = threading.Lock()

    def get(self) -> str:
        with self._lock:
            if self._token is None or not self._token.is_fresh(self._clock(), self._margin):
                self._token = self._fetcher()
                logger.debug("Spotify token refreshed")
            return self._token.token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None


class SpotifyImage(BaseModel):
    url: str
    height: Optional[int] = None
    width: Optional[int] = None


class SpotifyArtist(BaseModel):
    """Artist as returned by the Spotify Web API"""
    model_config = ConfigDict(extra='ignore')

    id: str
    name: str
    images: List[SpotifyImage] = Field(default_factory=list)
    genres: List[str] = Field(default_factory=list)
    popularity: Optional[int] = None
    followers: Optional[int] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'SpotifyArtist':
        data = dict(data)
        followers = data.get('followers')
        if isinstance(followers, dict):
            data['followers'] = followers.get('total')
        return cls.model_validate(data)


class SpotifyClient:
    """Minimal Spotify Web API client for artist lookups."""

    def __init__(self, config: Dict[str, Any], session: Optional[requests.Session] = None,
                 clock: Callable[[], float] = time.time):
        """
        Initialize client

        Args:
            config: The ``spotify`` configuration section
            session: HTTP session to use
        """
        self.client_id = config.get('client_id')
        self.client_secret = config.get('client_secret')
        self.timeout = config.get('timeout', 10)
        self.session = session or requests.Session()
        self._clock = clock
        self.tokens = TokenCache(self._fetch_token, clock=clock)

    def _fetch_token(self) -> AccessToken:
        if not self.client_id or not self.client_secret:
            raise ConfigurationError("Spotify client credentials not configured")

        response = self._send(
            'post', TOKEN_URL,
            data={'grant_type': 'client_credentials'},
            auth=(self.client_id, self.client_secret),
        )
        if response.status_code in (400, 401):
            raise ConfigurationError("Spotify rejected the client credentials")
        self._raise_for_status(response)

        payload = response.json()
        return AccessToken(
            token=payload['access_token'],
            expires_at=self._clock() + float(payload.get('expires_in', 3600)),
        )

    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise UpstreamTimeoutError(f"Spotify request timed out: {url}") from e
        except requests.ConnectionError as e:
            raise UpstreamUnavailableError(f"Spotify unreachable: {e}") from e

    @staticmethod
    def _raise_for_status(response: requests.Response) -> None:
        if response.status_code == 429:
            raise RateLimitedError(
                f"Spotify rate limited (retry after {response.headers.get('Retry-After', '?')}s)"
            )
        if response.status_code >= 500:
            raise UpstreamUnavailableError(f"Spotify returned {response.status_code}")
        response.raise_for_status()

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{API_BASE_URL}{path}"
        response = self._send('get', url, params=params,
                              headers={'Authorization': f"Bearer {self.tokens.get()}"})

        if response.status_code == 401:
            # Token revoked early; refresh once
            self.tokens.invalidate()
            response = self._send('get', url, params=params,
                                  headers={'Authorization': f"Bearer {self.tokens.get()}"})

        self._raise_for_status(response)
        return response.json()

    def search_artist(self, query: str, limit: int = 10) -> List[SpotifyArtist]:
        """
        Search artists by name.

        Args:
            query: Artist name
            limit: Maximum number of results

        Returns:
            Matching artists, best match first
        """
        data = self._get('/search', {'q': query, 'type': 'artist', 'limit': limit})
        items = (data.get('artists') or {}).get('items') or []
        return [SpotifyArtist.from_api(item) for item in items]

    def get_artist(self, artist_id: str) -> SpotifyArtist:
        return SpotifyArtist.from_api(self._get(f"/artists/{artist_id}"))
