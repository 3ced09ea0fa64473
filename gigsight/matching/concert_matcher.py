"""
Concert matching engine.

Scores a user's concerts against the evidence gathered for one media
item: capture date, capture GPS, and the artist/venue the vision model
recognised. Scoring is tiered:

* GPS within the venue radius AND a matching date is near-certain and
  scores a fixed 0.95.
* Otherwise signals stack additively (date 0.35, venue 0.30, artist
  0.25). When a visual signal contributed, the score is scaled by
  ``0.7 + 0.3 * overall visual confidence``. The additive tier is capped
  below the GPS tier so it can never outrank a physical-presence match.

Concerts under the suggestion threshold are dropped; the best remaining
concert is auto-matched if it clears the auto-match threshold, and
everything else is offered to the user as ranked suggestions.
"""

import logging
import math
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any, Tuple, Iterable

from ..analysis.models import VisualAnalysisResult
from ..db.operations import ConcertOperations, MediaOperations
from ..utils.geo import haversine_km
from ..utils.logging import StructuredLogger

logger = logging.getLogger(__name__)

AUTO_MATCH_THRESHOLD = 0.80
SUGGESTION_THRESHOLD = 0.35
GPS_MATCH_RADIUS_KM = 5.0
MIN_DATE_BUFFER_DAYS = 1.5
SEARCH_WINDOW_DAYS = 10

GPS_DATE_CONFIDENCE = 0.95
ADDITIVE_CAP = 0.94
DATE_WEIGHT = 0.35
VENUE_WEIGHT = 0.30
ARTIST_WEIGHT = 0.25

_NON_WORD = re.compile(r'[\W_]+')


# String matching

def normalize_name(value: Optional[str]) -> str:
    """
    Lowercase, strip accents, and turn punctuation runs into single spaces.

    "Beyoncé" -> "beyonce", "Guns N' Roses" -> "guns n roses"
    """
    if not value:
        return ''
    decomposed = unicodedata.normalize('NFKD', value)
    stripped = ''.join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_WORD.sub(' ', stripped.casefold()).strip()


def strings_match(a: Optional[str], b: Optional[str]) -> bool:
    """
    Fuzzy name equality.

    True when the names are equal ignoring case, accents, punctuation and
    spacing, or when one normalized name contains the other. Abbreviations
    are not expanded: "MSG" does not match "Madison Square Garden".
    """
    norm_a = normalize_name(a)
    norm_b = normalize_name(b)
    if not norm_a or not norm_b:
        return False

    if norm_a.replace(' ', '') == norm_b.replace(' ', ''):
        return True

    return norm_a in norm_b or norm_b in norm_a


# Date matching

def dates_match(taken_at: datetime, start: datetime, end: Optional[datetime] = None,
                min_buffer_days: float = MIN_DATE_BUFFER_DAYS) -> bool:
    """
    Check whether a capture time falls within a concert's (buffered) dates.

    The buffer is half the event length in days, rounded up, and never
    less than ``min_buffer_days``, so multi-day festivals get a wider
    margin than single shows.
    """
    effective_end = end if end and end >= start else start
    event_days = round((effective_end - start).total_seconds() / 86400) + 1
    buffer = timedelta(days=max(min_buffer_days, math.ceil(event_days / 2)))

    return start - buffer <= taken_at <= effective_end + buffer


# Data types

@dataclass
class MatchSignals:
    """Everything known about a media item before scoring"""
    user_id: str
    taken_at: Optional[datetime]
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    visual_analysis: Optional[VisualAnalysisResult] = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class VenueRecord:
    name: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class ArtistCredit:
    name: str
    is_headliner: bool = False


@dataclass(frozen=True)
class ConcertRecord:
    """Read-only view of a concert used for scoring"""
    id: int
    concert_date: datetime
    concert_end_date: Optional[datetime] = None
    venue: Optional[VenueRecord] = None
    artists: Tuple[ArtistCredit, ...] = ()

    @classmethod
    def from_model(cls, concert) -> 'ConcertRecord':
        """Build from a Concert ORM object with venue and artists loaded"""
        venue = None
        if concert.venue is not None:
            venue = VenueRecord(
                name=concert.venue.name,
                city=concert.venue.city,
                latitude=concert.venue.latitude,
                longitude=concert.venue.longitude,
            )
        artists = tuple(
            ArtistCredit(name=link.artist.name, is_headliner=bool(link.is_headliner))
            for link in concert.artist_links
        )
        return cls(
            id=concert.id,
            concert_date=concert.concert_date,
            concert_end_date=concert.concert_end_date,
            venue=venue,
            artists=artists,
        )


@dataclass
class SignalBreakdown:
    """Which pieces of evidence agreed with a concert"""
    gps_match: bool = False
    date_match: bool = False
    venue_match: bool = False
    artist_match: bool = False

    @property
    def count(self) -> int:
        return sum((self.gps_match, self.date_match, self.venue_match, self.artist_match))

    def to_dict(self) -> Dict[str, bool]:
        return {
            'gpsMatch': self.gps_match,
            'dateMatch': self.date_match,
            'venueMatch': self.venue_match,
            'artistMatch': self.artist_match,
        }


@dataclass
class ConcertMatch:
    """Score of one concert for one media item"""
    concert_id: int
    confidence: float
    signals: SignalBreakdown
    matched_via: str
    distance_km: Optional[float] = None

    def to_metadata(self) -> Dict[str, Any]:
        """Payload stored on the media item to explain the match"""
        metadata = {
            'confidence': self.confidence,
            'signals': self.signals.to_dict(),
            'matchedVia': self.matched_via,
        }
        if self.distance_km is not None:
            metadata['distanceKm'] = round(self.distance_km, 3)
        return metadata

    def to_suggestion(self) -> Dict[str, Any]:
        return {'concertId': self.concert_id, **self.to_metadata()}


@dataclass
class MatchResult:
    auto_matched: Optional[ConcertMatch] = None
    suggestions: List[ConcertMatch] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'autoMatched': self.auto_matched.to_suggestion() if self.auto_matched else None,
            'suggestions': [s.to_suggestion() for s in self.suggestions],
        }


# Scoring

def calculate_confidence(signals: SignalBreakdown, visual_confidence: float,
                         gps_date_confidence: float = GPS_DATE_CONFIDENCE,
                         additive_cap: float = ADDITIVE_CAP) -> Tuple[float, str]:
    """
    Confidence score and matchedVia label for a signal combination.

    Returns:
        (confidence, matched_via)
    """
    if signals.gps_match and signals.date_match:
        return gps_date_confidence, 'gps+date'

    score = 0.0
    labels = []
    if signals.date_match:
        score += DATE_WEIGHT
        labels.append('date')
    if signals.venue_match:
        score += VENUE_WEIGHT
        labels.append('venue')
    if signals.artist_match:
        score += ARTIST_WEIGHT
        labels.append('artist')

    if signals.venue_match or signals.artist_match:
        visual_confidence = max(0.0, min(1.0, visual_confidence or 0.0))
        score *= 0.7 + 0.3 * visual_confidence

    # Strictly below the GPS tier
    cap = min(additive_cap, gps_date_confidence - 0.01)
    return round(min(score, cap), 4), '+'.join(labels) or 'none'


class ConcertMatcher:
    """
    Matches media items to the owning user's concerts.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize matcher

        Args:
            config: Full GigSight configuration (reads the ``matching`` section)
        """
        matching = (config or {}).get('matching', {})
        self.auto_match_threshold = matching.get('auto_match_threshold', AUTO_MATCH_THRESHOLD)
        self.suggestion_threshold = matching.get('suggestion_threshold', SUGGESTION_THRESHOLD)
        self.gps_radius_km = matching.get('gps_radius_km', GPS_MATCH_RADIUS_KM)
        self.min_date_buffer_days = matching.get('min_date_buffer_days', MIN_DATE_BUFFER_DAYS)
        self.search_window_days = matching.get('search_window_days', SEARCH_WINDOW_DAYS)
        self.gps_date_confidence = matching.get('gps_date_confidence', GPS_DATE_CONFIDENCE)
        self.additive_cap = matching.get('additive_cap', ADDITIVE_CAP)
        self.log = StructuredLogger(__name__)

    def score_concert(self, signals: MatchSignals, concert: ConcertRecord) -> ConcertMatch:
        """Compute the signal breakdown and confidence for one concert."""
        breakdown = SignalBreakdown()
        breakdown.date_match = dates_match(
            signals.taken_at, concert.concert_date, concert.concert_end_date,
            self.min_date_buffer_days
        )

        venue = concert.venue
        distance = None
        if signals.has_location and venue is not None and venue.has_location:
            distance = haversine_km(signals.latitude, signals.longitude,
                                    venue.latitude, venue.longitude)
            breakdown.gps_match = distance <= self.gps_radius_km

        visual = signals.visual_analysis
        visual_confidence = 0.0
        if visual is not None:
            visual_confidence = visual.overall_confidence
            if venue is not None:
                name_matches = strings_match(visual.venue.name, venue.name)
                city_matches = strings_match(visual.venue.city, venue.city)
                # A matching city only counts when the model named a venue at all
                breakdown.venue_match = name_matches or (city_matches and bool(visual.venue.name))
            breakdown.artist_match = any(
                strings_match(visual.artist.name, credit.name) for credit in concert.artists
            )

        confidence, matched_via = calculate_confidence(
            breakdown, visual_confidence, self.gps_date_confidence, self.additive_cap
        )

        self.log.debug("Concert score", concert_id=concert.id, confidence=confidence,
                       matched_via=matched_via, signals=breakdown.to_dict())

        return ConcertMatch(
            concert_id=concert.id,
            confidence=confidence,
            signals=breakdown,
            matched_via=matched_via,
            distance_km=distance,
        )

    def score_candidates(self, signals: MatchSignals,
                         concerts: Iterable[ConcertRecord]) -> MatchResult:
        """
        Rank candidate concerts and split them into auto-match and suggestions.

        Ties in confidence go to the concert with more matching signals,
        then to the one starting closest to the capture time, then to the
        lower concert id.
        """
        if signals.taken_at is None:
            return MatchResult()

        scored = []
        for concert in concerts:
            match = self.score_concert(signals, concert)
            if match.confidence >= self.suggestion_threshold:
                proximity = abs((concert.concert_date - signals.taken_at).total_seconds())
                scored.append((match, proximity))

        scored.sort(key=lambda item: (-item[0].confidence, -item[0].signals.count,
                                      item[1], item[0].concert_id))
        matches = [match for match, _ in scored]

        if matches and matches[0].confidence >= self.auto_match_threshold:
            return MatchResult(auto_matched=matches[0], suggestions=matches[1:])
        return MatchResult(auto_matched=None, suggestions=matches)

    def find_matches(self, signals: MatchSignals) -> MatchResult:
        """
        Find matching concerts for analyzed media.

        Without a capture time nothing is matched, whatever else is known.
        """
        log = self.log.bind(user_id=signals.user_id)

        if signals.taken_at is None:
            log.info("No capture time, skipping match")
            return MatchResult()

        window = timedelta(days=self.search_window_days)
        concerts = ConcertOperations.find_concerts_in_window(
            signals.user_id, signals.taken_at - window, signals.taken_at + window
        )
        log.info("Found concerts in search window", count=len(concerts),
                 taken_at=signals.taken_at, has_gps=signals.has_location)

        if not concerts:
            return MatchResult()

        result = self.score_candidates(signals, [ConcertRecord.from_model(c) for c in concerts])

        if result.auto_matched:
            log.info("Auto-match found", concert_id=result.auto_matched.concert_id,
                     confidence=result.auto_matched.confidence,
                     matched_via=result.auto_matched.matched_via)
        else:
            log.info("No auto-match", suggestions=len(result.suggestions),
                     top_confidence=result.suggestions[0].confidence if result.suggestions else None)
        return result

    def apply_match(self, media_id: int, match: ConcertMatch) -> None:
        """Persist the chosen concert and the reasons for it on the media item."""
        MediaOperations.apply_match(media_id, match.concert_id, match.to_metadata())
