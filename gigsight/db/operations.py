"""
Database operations for GigSight.

Provides the read/update operations the analysis pipeline needs for
media items and the concert lookups used by matching.
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable
from sqlalchemy import and_, or_
from sqlalchemy.orm import selectinload

from .models import (
    MediaItem, Concert, ConcertArtist, Venue, Artist,
    MediaType, AnalysisStatus
)
from .connection import get_session
from ..exceptions import MediaNotFoundError, InvalidStatusTransition

logger = logging.getLogger(__name__)

# target status -> statuses it may be entered from
_ALLOWED_TRANSITIONS = {
    # A new analysis request restarts the machine from any state
    AnalysisStatus.PROCESSING: {
        AnalysisStatus.PENDING, AnalysisStatus.PROCESSING,
        AnalysisStatus.COMPLETED, AnalysisStatus.FAILED,
    },
    AnalysisStatus.COMPLETED: {AnalysisStatus.PROCESSING},
    AnalysisStatus.FAILED: {AnalysisStatus.PROCESSING},
    AnalysisStatus.PENDING: set(),
}


class MediaOperations:
    """Operations for managing media items in the database."""

    @staticmethod
    def create_media(
        user_id: str,
        media_type: MediaType,
        storage_path: str,
        **fields: Any
    ) -> MediaItem:
        """
        Create a new media record in the pending state.

        Args:
            user_id: Owning user
            media_type: Photo or video
            storage_path: Object storage key of the raw bytes
            **fields: Any other MediaItem column values

        Returns:
            MediaItem: Created media object
        """
        if isinstance(media_type, str):
            media_type = MediaType(media_type)

        with get_session() as session:
            media = MediaItem(
                user_id=user_id,
                media_type=media_type,
                storage_path=storage_path,
                analysis_status=AnalysisStatus.PENDING,
                analysis_attempts=0,
                **fields
            )
            session.add(media)
            session.flush()
            logger.info(f"Created media record: {media.id} - {storage_path}")
            return media

    @staticmethod
    def get_media(media_id: int) -> MediaItem:
        """
        Load a media item by id.

        Raises:
            MediaNotFoundError: If no such media item exists
        """
        with get_session() as session:
            media = session.get(MediaItem, media_id)
            if media is None:
                raise MediaNotFoundError(f"Media {media_id} not found")
            return media

    @staticmethod
    def _load_for_update(session, media_id: int) -> MediaItem:
        media = session.get(MediaItem, media_id)
        if media is None:
            raise MediaNotFoundError(f"Media {media_id} not found")
        return media

    @staticmethod
    def _transition(media: MediaItem, status: AnalysisStatus) -> None:
        if media.analysis_status not in _ALLOWED_TRANSITIONS[status]:
            raise InvalidStatusTransition(media.id, media.analysis_status, status)
        media.analysis_status = status

    @staticmethod
    def mark_processing(media_id: int) -> MediaItem:
        """
        Start (or restart) analysis: status processing, prior error cleared.

        ``analysis_attempts`` counts consecutive starts of one request. It
        grows only when an item is picked up again while still processing
        (a requeue after a crash); a fresh request starts over at 1.

        Returns:
            MediaItem: The updated media item
        """
        with get_session() as session:
            media = MediaOperations._load_for_update(session, media_id)
            resumed = media.analysis_status == AnalysisStatus.PROCESSING
            MediaOperations._transition(media, AnalysisStatus.PROCESSING)
            media.analysis_started_at = datetime.utcnow()
            media.analysis_completed_at = None
            media.analysis_error = None
            media.analysis_attempts = (media.analysis_attempts or 0) + 1 if resumed else 1
            return media

    @staticmethod
    def mark_completed(media_id: int) -> None:
        """Finish analysis successfully."""
        with get_session() as session:
            media = MediaOperations._load_for_update(session, media_id)
            MediaOperations._transition(media, AnalysisStatus.COMPLETED)
            media.analysis_completed_at = datetime.utcnow()
            media.analysis_error = None

    @staticmethod
    def mark_failed(media_id: int, message: str) -> None:
        """Finish analysis with a user-presentable error message."""
        with get_session() as session:
            media = MediaOperations._load_for_update(session, media_id)
            MediaOperations._transition(media, AnalysisStatus.FAILED)
            media.analysis_completed_at = datetime.utcnow()
            media.analysis_error = message[:255]

    @staticmethod
    def save_extracted_metadata(
        media_id: int,
        taken_at: Optional[datetime] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        duration: Optional[float] = None,
        thumbnail_path: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Persist newly discovered capture metadata.

        Only fills fields that are still empty; values already stored
        (for instance supplied at upload time) are kept.

        Returns:
            Dictionary of the columns that were written
        """
        with get_session() as session:
            media = MediaOperations._load_for_update(session, media_id)
            written: Dict[str, Any] = {}

            if taken_at is not None and media.taken_at is None:
                media.taken_at = taken_at
                written['taken_at'] = taken_at
            if latitude is not None and longitude is not None and media.location_lat is None:
                media.location_lat = latitude
                media.location_lng = longitude
                written['location_lat'] = latitude
                written['location_lng'] = longitude
            if duration is not None and media.duration is None:
                media.duration = duration
                written['duration'] = duration
            if thumbnail_path and not media.thumbnail_path:
                media.thumbnail_path = thumbnail_path
                written['thumbnail_path'] = thumbnail_path

            return written

    @staticmethod
    def save_analysis(media_id: int, analysis: Dict[str, Any]) -> None:
        """Replace the stored analysis payload."""
        with get_session() as session:
            media = MediaOperations._load_for_update(session, media_id)
            media.ai_analysis = dict(analysis)

    @staticmethod
    def apply_match(media_id: int, concert_id: int, match_metadata: Dict[str, Any]) -> None:
        """
        Link a media item to a concert and record why it was matched.

        Args:
            media_id: Media item to update
            concert_id: Concert chosen by the match engine
            match_metadata: Confidence, signal breakdown and matchedVia label
        """
        with get_session() as session:
            media = MediaOperations._load_for_update(session, media_id)
            analysis = dict(media.ai_analysis or {})
            analysis.pop('matchSuggestions', None)
            analysis['matchMetadata'] = match_metadata
            media.concert_id = concert_id
            media.ai_analysis = analysis

        logger.info(f"Applied concert match: media {media_id} -> concert {concert_id} "
                    f"({match_metadata.get('matchedVia')}, {match_metadata.get('confidence')})")

    @staticmethod
    def store_suggestions(media_id: int, suggestions: List[Dict[str, Any]]) -> None:
        """Store ranked match suggestions for the user to review."""
        with get_session() as session:
            media = MediaOperations._load_for_update(session, media_id)
            analysis = dict(media.ai_analysis or {})
            analysis['matchSuggestions'] = list(suggestions)
            media.ai_analysis = analysis

    @staticmethod
    def assign_concert(media_id: int, user_id: str, concert_id: Optional[int]) -> MediaItem:
        """
        Explicit re-assignment by the user. Pass None to unassign.

        Raises:
            MediaNotFoundError: If the media or concert does not belong to the user
        """
        with get_session() as session:
            media = MediaOperations._load_for_update(session, media_id)
            if media.user_id != user_id:
                raise MediaNotFoundError(f"Media {media_id} not found")

            if concert_id is not None:
                concert = session.get(Concert, concert_id)
                if concert is None or concert.user_id != user_id:
                    raise MediaNotFoundError(f"Concert {concert_id} not found")

            analysis = dict(media.ai_analysis or {})
            analysis.pop('matchSuggestions', None)
            if concert_id is not None:
                analysis['matchMetadata'] = {'matchedVia': 'manual'}
            else:
                analysis.pop('matchMetadata', None)
            media.ai_analysis = analysis
            media.concert_id = concert_id
            return media

    @staticmethod
    def find_stale_processing(started_before: datetime) -> List[MediaItem]:
        """Media items left in processing since before the given time."""
        with get_session() as session:
            return session.query(MediaItem).filter(
                MediaItem.analysis_status == AnalysisStatus.PROCESSING,
                or_(
                    MediaItem.analysis_started_at.is_(None),
                    MediaItem.analysis_started_at < started_before
                )
            ).all()

    @staticmethod
    def get_media_by_status(status: AnalysisStatus, limit: int = 100) -> List[MediaItem]:
        """Get media items in a given analysis status, oldest first."""
        with get_session() as session:
            return session.query(MediaItem).filter(
                MediaItem.analysis_status == status
            ).order_by(MediaItem.created_at).limit(limit).all()


class ConcertOperations:
    """Operations for concerts and their venues and artists."""

    @staticmethod
    def create_concert(
        user_id: str,
        concert_date: datetime,
        concert_end_date: Optional[datetime] = None,
        venue: Optional[Dict[str, Any]] = None,
        artists: Iterable[str] = (),
        **fields: Any
    ) -> Concert:
        """
        Create a concert with its venue and lineup.

        Args:
            user_id: Owning user
            concert_date: First (or only) day, naive UTC
            concert_end_date: Last day for multi-day events
            venue: Venue column values (name, city, latitude, longitude, ...)
            artists: Artist names in billing order; the first is the headliner

        Returns:
            Concert: Created concert
        """
        with get_session() as session:
            concert = Concert(
                user_id=user_id,
                concert_date=concert_date,
                concert_end_date=concert_end_date,
                **fields
            )
            if venue:
                concert.venue = Venue(**venue)

            for position, name in enumerate(artists):
                artist = session.query(Artist).filter(Artist.name == name).first()
                if artist is None:
                    artist = Artist(name=name)
                concert.artist_links.append(ConcertArtist(
                    artist=artist,
                    position=position,
                    is_headliner=(position == 0)
                ))

            session.add(concert)
            session.flush()
            concert_id = concert.id

        logger.info(f"Created concert record: {concert_id}")
        return ConcertOperations.get_concert(concert_id)

    @staticmethod
    def _with_lineup(query):
        return query.options(
            selectinload(Concert.venue),
            selectinload(Concert.artist_links).selectinload(ConcertArtist.artist),
        )

    @staticmethod
    def get_concert(concert_id: int) -> Optional[Concert]:
        """Get a concert with venue and artists loaded."""
        with get_session() as session:
            query = ConcertOperations._with_lineup(session.query(Concert))
            return query.filter(Concert.id == concert_id).first()

    @staticmethod
    def find_concerts_in_window(user_id: str, window_start: datetime,
                                window_end: datetime) -> List[Concert]:
        """
        A user's concerts that could overlap a date window.

        Single-day concerts qualify when their date falls in the window;
        multi-day concerts qualify when their date range overlaps it.
        Venue and artists are eagerly loaded.
        """
        with get_session() as session:
            query = ConcertOperations._with_lineup(session.query(Concert))
            return query.filter(
                Concert.user_id == user_id,
                or_(
                    and_(Concert.concert_date >= window_start,
                         Concert.concert_date <= window_end),
                    and_(Concert.concert_date <= window_end,
                         Concert.concert_end_date.isnot(None),
                         Concert.concert_end_date >= window_start),
                )
            ).order_by(Concert.concert_date).all()
