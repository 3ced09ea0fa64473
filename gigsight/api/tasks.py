"""
Celery tasks for GigSight background analysis.

Each analysis is a task keyed by media id. A Redis lock keeps duplicate
requests for the same item from running side by side, and a periodic
sweep picks up items a crashed worker left in ``processing``.
"""

import logging
from typing import Dict, Any, Optional

from celery import Task
import redis

from .celery_app import celery_app, config
from ..db import configure_database, get_session_factory, MediaOperations
from ..processing.media_analysis import MediaAnalysisService, get_error_message

logger = logging.getLogger(__name__)

# Redis client for per-item coordination
redis_client = redis.from_url(config.get('celery', {}).get('broker_url', 'redis://localhost:6379/0'))

LOCK_KEY = "gigsight:analysis-lock:{media_id}"

_service: Optional[MediaAnalysisService] = None


def get_analysis_service() -> MediaAnalysisService:
    """Build the worker's analysis service on first use."""
    global _service
    if _service is None:
        if get_session_factory() is None:
            configure_database(config)
        _service = MediaAnalysisService(config)
    return _service


class AnalysisTask(Task):
    """Base task class with common functionality"""

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Handle task failure"""
        logger.error(f"Task {task_id} failed for args {args}: {exc}")

    def on_success(self, retval, task_id, args, kwargs):
        """Handle task success"""
        logger.info(f"Task {task_id} completed: {retval}")


@celery_app.task(base=AnalysisTask, bind=True, name='gigsight.analyze_media')
def analyze_media(self, media_id: int) -> Dict[str, Any]:
    """
    Run the analysis pipeline for one media item.

    Args:
        media_id: Media item to analyze

    Returns:
        Dict with the media id and the status reached ('skipped' when
        another worker already holds the item)
    """
    lock_key = LOCK_KEY.format(media_id=media_id)
    lock_ttl = config.get('analysis', {}).get('lock_ttl', 900)
    token = self.request.id or 'local'

    if not redis_client.set(lock_key, token, nx=True, ex=lock_ttl):
        logger.info(f"Analysis of media {media_id} already running, skipping")
        return {'media_id': media_id, 'status': 'skipped'}

    try:
        try:
            service = get_analysis_service()
        except Exception as e:
            # The item never reached processing; record a terminal status anyway
            logger.error(f"Cannot start analysis of media {media_id}: {e}")
            MediaOperations.mark_processing(media_id)
            MediaOperations.mark_failed(media_id, get_error_message(e))
            return {'media_id': media_id, 'status': 'failed'}

        status = service.run_analysis(media_id)
    finally:
        # Only release a lock we still own
        held = redis_client.get(lock_key)
        if held is not None and held.decode() == token:
            redis_client.delete(lock_key)

    return {'media_id': media_id, 'status': status.value}


@celery_app.task(base=AnalysisTask, name='gigsight.recover_stale_analyses')
def recover_stale_analyses() -> Dict[str, Any]:
    """
    Requeue or fail analyses stuck in processing.

    Returns:
        Dict with requeued and failed media ids
    """
    return get_analysis_service().recover_stale(enqueue=lambda media_id: analyze_media.delay(media_id))


def request_analysis(media_id: int) -> str:
    """
    Queue a (re-)analysis of a media item.

    Returns:
        Celery task id
    """
    result = analyze_media.delay(media_id)
    logger.info(f"Queued analysis of media {media_id} as task {result.id}")
    return result.id
