"""
Media analysis pipeline.

Runs one media item through metadata extraction, thumbnail generation,
visual identification and concert matching, persisting progress after
each stage. The item always ends in ``completed`` or ``failed``; the
vision stage is an enhancement and its failure only degrades the result
to metadata-only matching.
"""

import logging
import posixpath
import subprocess
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Callable, List

import requests
from botocore.exceptions import ClientError, EndpointConnectionError
from celery.exceptions import SoftTimeLimitExceeded

from ..analysis.models import VisualAnalysisResult
from ..analysis.vision_llm_analyzer import VisionAnalyzer, AnalysisContext
from ..db.models import MediaItem, MediaType, AnalysisStatus
from ..db.operations import MediaOperations
from ..exceptions import (
    ConfigurationError, MediaFormatError, MediaTooLargeError, MediaNotFoundError,
    RateLimitedError, UpstreamTimeoutError, UpstreamUnavailableError
)
from ..extraction.exif import MetadataExtractor
from ..extraction.ffmpeg import FrameSampler
from ..matching.concert_matcher import ConcertMatcher, MatchSignals
from ..storage.abstract import StorageBackend, StorageNotFoundError, create_storage
from ..utils.logging import StructuredLogger

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = 'Analysis interrupted'
DEFAULT_ERROR_MESSAGE = 'Analysis failed'

_STATUS_MESSAGES = {
    400: 'Invalid media format',
    401: 'Service configuration error',
    403: 'Service configuration error',
    404: 'Media file not found',
    413: 'File too large',
    429: 'Rate limited - try again shortly',
    500: 'Service temporarily unavailable',
    502: 'Service temporarily unavailable',
    503: 'Service temporarily unavailable',
    504: 'Analysis timed out',
}

# (elapsed seconds upper bound, photo interval ms, video interval ms)
_RETRY_BANDS = (
    (10, 500, 1000),
    (30, 2000, 3000),
)
_RETRY_LATE = (5000, 8000)


def get_retry_after(media_type: MediaType, started_at: Optional[datetime],
                    now: Optional[datetime] = None) -> int:
    """
    Suggested client poll interval in milliseconds.

    Short while an analysis has just started, longer as it runs on, and
    longer for videos than photos at every stage.
    """
    is_video = media_type == MediaType.VIDEO
    if started_at is None:
        return _RETRY_BANDS[0][2 if is_video else 1]

    elapsed = ((now or datetime.utcnow()) - started_at).total_seconds()
    for limit, photo_ms, video_ms in _RETRY_BANDS:
        if elapsed < limit:
            return video_ms if is_video else photo_ms
    return _RETRY_LATE[1 if is_video else 0]


def get_error_message(error: BaseException) -> str:
    """
    Map an exception to a short user-facing message.

    Never includes exception text, so internal details do not leak to
    clients.
    """
    if isinstance(error, MediaTooLargeError):
        return 'File too large'
    if isinstance(error, MediaFormatError):
        return 'Invalid media format'
    if isinstance(error, ConfigurationError):
        return 'Service configuration error'
    if isinstance(error, (MediaNotFoundError, StorageNotFoundError)):
        return 'Media file not found'
    if isinstance(error, RateLimitedError):
        return 'Rate limited - try again shortly'
    if isinstance(error, (UpstreamTimeoutError, SoftTimeLimitExceeded,
                          subprocess.TimeoutExpired, requests.Timeout, TimeoutError)):
        return 'Analysis timed out'
    if isinstance(error, UpstreamUnavailableError):
        return 'Service temporarily unavailable'

    if isinstance(error, requests.HTTPError) and error.response is not None:
        return _STATUS_MESSAGES.get(error.response.status_code, DEFAULT_ERROR_MESSAGE)
    if isinstance(error, ClientError):
        code = error.response.get('Error', {}).get('Code')
        if code in ('NoSuchKey', 'NoSuchBucket'):
            return 'Media file not found'
        status = error.response.get('ResponseMetadata', {}).get('HTTPStatusCode')
        return _STATUS_MESSAGES.get(status, DEFAULT_ERROR_MESSAGE)

    if isinstance(error, (requests.ConnectionError, EndpointConnectionError, ConnectionError)):
        return 'Service unavailable'

    return DEFAULT_ERROR_MESSAGE


def thumbnail_path_for(storage_path: str) -> str:
    """Storage key of a video's thumbnail: ``<base>_thumb.jpg``"""
    base, _ = posixpath.splitext(storage_path)
    return f"{base}_thumb.jpg"


def build_status_payload(media: MediaItem, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Status view of a media item for polling clients.

    ``retryAfter`` is only present while the analysis is still running.
    """
    payload = {
        'id': media.id,
        'mediaType': media.media_type.value,
        'analysisStatus': media.analysis_status.value,
        'analysisError': media.analysis_error,
        'aiAnalysis': media.ai_analysis,
        'concertId': media.concert_id,
        'takenAt': media.taken_at.isoformat() if media.taken_at else None,
        'thumbnailPath': media.thumbnail_path,
    }
    if media.analysis_status == AnalysisStatus.PROCESSING:
        payload['retryAfter'] = get_retry_after(media.media_type, media.analysis_started_at, now)
    return payload


class MediaAnalysisService:
    """Runs the analysis pipeline for single media items."""

    def __init__(self, config: Dict[str, Any],
                 storage: Optional[StorageBackend] = None,
                 extractor: Optional[MetadataExtractor] = None,
                 sampler: Optional[FrameSampler] = None,
                 analyzer: Optional[VisionAnalyzer] = None,
                 matcher: Optional[ConcertMatcher] = None):
        """
        Initialize the service. Collaborators default to ones built from config.

        Args:
            config: Full GigSight configuration
        """
        self.config = config
        self.storage = storage or create_storage(config.get('storage', {}))
        self.extractor = extractor or MetadataExtractor()
        self.sampler = sampler or FrameSampler(config.get('ffmpeg', {}))
        self.analyzer = analyzer or VisionAnalyzer(config)
        self.matcher = matcher or ConcertMatcher(config)

        analysis_config = config.get('analysis', {})
        self.max_media_bytes = analysis_config.get('max_media_bytes', 500 * 1024 * 1024)
        self.stale_after = timedelta(minutes=analysis_config.get('stale_after_minutes', 30))
        self.max_attempts = analysis_config.get('max_attempts', 2)

        self.log = StructuredLogger(__name__)

    def run_analysis(self, media_id: int) -> AnalysisStatus:
        """
        Analyze one media item end to end.

        Args:
            media_id: Media item to analyze

        Returns:
            The terminal status reached

        Raises:
            MediaNotFoundError: If the media item does not exist
        """
        media = MediaOperations.mark_processing(media_id)
        log = self.log.bind(media_id=media_id, media_type=media.media_type.value)
        log.info("Starting analysis", attempt=media.analysis_attempts)

        try:
            self._run_pipeline(media, log)
        except Exception as e:
            message = get_error_message(e)
            log.exception("Analysis failed", error=message)
            try:
                MediaOperations.mark_failed(media_id, message)
            except Exception as mark_error:
                log.error("Could not record analysis failure", error=str(mark_error))
            return AnalysisStatus.FAILED

        return AnalysisStatus.COMPLETED

    def _run_pipeline(self, media: MediaItem, log: StructuredLogger) -> None:
        data = self.storage.fetch_bytes(media.storage_path)
        if len(data) > self.max_media_bytes:
            raise MediaTooLargeError(len(data), self.max_media_bytes)

        is_video = media.media_type == MediaType.VIDEO
        exif = None
        video_meta = None
        thumbnail_path = None

        # Metadata first, saved before any remote call
        if is_video:
            video_meta = self.sampler.extract_metadata(data)
            if not media.thumbnail_path:
                thumbnail_path = self._generate_thumbnail(media, data, log)
        else:
            exif = self.extractor.extract(data)

        extracted = video_meta or exif
        has_extracted_location = extracted is not None and extracted.has_location
        written = MediaOperations.save_extracted_metadata(
            media.id,
            taken_at=extracted.taken_at if extracted else None,
            latitude=extracted.latitude if has_extracted_location else None,
            longitude=extracted.longitude if has_extracted_location else None,
            duration=video_meta.duration if video_meta else None,
            thumbnail_path=thumbnail_path,
        )
        if written:
            log.info("Metadata saved", fields=sorted(written))

        # Fresh extraction wins over whatever was stored before
        taken_at = (extracted.taken_at if extracted else None) or media.taken_at
        if has_extracted_location:
            latitude, longitude = extracted.latitude, extracted.longitude
        else:
            latitude, longitude = media.location_lat, media.location_lng
        duration = (video_meta.duration if video_meta else None) or media.duration

        context = AnalysisContext(
            taken_at=taken_at,
            latitude=latitude,
            longitude=longitude,
            original_filename=media.original_filename,
        )
        visual = self._analyze_visuals(media, data, duration, context, log)

        analysis = visual.to_payload() if visual else {}
        analysis.update({
            'exifExtracted': exif is not None,
            'metadataExtracted': extracted is not None,
            'visualAnalysisFailed': visual is None,
        })
        MediaOperations.save_analysis(media.id, analysis)

        result = self.matcher.find_matches(MatchSignals(
            user_id=media.user_id,
            taken_at=taken_at,
            latitude=latitude,
            longitude=longitude,
            visual_analysis=visual,
        ))

        if result.auto_matched:
            self.matcher.apply_match(media.id, result.auto_matched)
        elif result.suggestions:
            MediaOperations.store_suggestions(
                media.id, [s.to_suggestion() for s in result.suggestions]
            )
            log.info("Match suggestions stored", count=len(result.suggestions))

        MediaOperations.mark_completed(media.id)
        log.info("Analysis completed",
                 has_taken_at=taken_at is not None,
                 has_gps=latitude is not None and longitude is not None,
                 has_visual=visual is not None,
                 concert_id=result.auto_matched.concert_id if result.auto_matched else None)

    def _generate_thumbnail(self, media: MediaItem, data: bytes,
                            log: StructuredLogger) -> Optional[str]:
        try:
            thumbnail = self.sampler.generate_thumbnail(data)
            if not thumbnail:
                return None
            path = thumbnail_path_for(media.storage_path)
            self.storage.put_bytes(thumbnail, path, 'image/jpeg')
            log.info("Video thumbnail generated", thumbnail_path=path)
            return path
        except Exception as e:
            log.warning("Failed to generate video thumbnail", error=str(e))
            return None

    def _analyze_visuals(self, media: MediaItem, data: bytes, duration: Optional[float],
                         context: AnalysisContext,
                         log: StructuredLogger) -> Optional[VisualAnalysisResult]:
        try:
            if media.media_type == MediaType.VIDEO:
                frames = self.sampler.extract_frames(data, duration)
                if not frames:
                    log.warning("No frames extracted, skipping visual analysis")
                    return None
                return self.analyzer.analyze_frames(frames, context)

            url = self.storage.presigned_download_url(media.storage_path)
            return self.analyzer.analyze_photo(url, context)
        except Exception as e:
            log.warning("Visual analysis failed, continuing with metadata-only matching",
                        error=str(e), reason=get_error_message(e))
            return None

    def recover_stale(self, enqueue: Callable[[int], Any],
                      now: Optional[datetime] = None) -> Dict[str, List[int]]:
        """
        Deal with analyses left in ``processing`` by a crashed worker.

        Items with attempts left are handed to ``enqueue``; the rest are
        marked failed.

        Returns:
            {'requeued': [...ids], 'failed': [...ids]}
        """
        cutoff = (now or datetime.utcnow()) - self.stale_after
        outcome: Dict[str, List[int]] = {'requeued': [], 'failed': []}

        for media in MediaOperations.find_stale_processing(cutoff):
            if (media.analysis_attempts or 0) < self.max_attempts:
                enqueue(media.id)
                outcome['requeued'].append(media.id)
            else:
                MediaOperations.mark_failed(media.id, INTERRUPTED_MESSAGE)
                outcome['failed'].append(media.id)

        if outcome['requeued'] or outcome['failed']:
            self.log.warning("Recovered stale analyses", **outcome)
        return outcome
