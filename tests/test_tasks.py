"""
Tests for Celery analysis tasks
"""

from unittest.mock import Mock, patch

import pytest

from gigsight.api import tasks
from gigsight.db import AnalysisStatus, MediaOperations
from gigsight.exceptions import ConfigurationError


@pytest.fixture
def redis_client():
    with patch.object(tasks, 'redis_client') as client:
        client.set.return_value = True
        client.get.return_value = b'local'
        yield client


@pytest.fixture
def service():
    service = Mock()
    service.run_analysis.return_value = AnalysisStatus.COMPLETED
    with patch.object(tasks, 'get_analysis_service', return_value=service):
        yield service


class TestAnalyzeMedia:
    """Test the per-item analysis task"""

    def test_runs_and_releases_lock(self, redis_client, service):
        result = tasks.analyze_media.run(7)

        assert result == {'media_id': 7, 'status': 'completed'}
        service.run_analysis.assert_called_once_with(7)
        redis_client.set.assert_called_once_with(
            'gigsight:analysis-lock:7', 'local', nx=True, ex=900
        )
        redis_client.delete.assert_called_once_with('gigsight:analysis-lock:7')

    def test_duplicate_request_skipped(self, redis_client, service):
        redis_client.set.return_value = None

        result = tasks.analyze_media.run(7)

        assert result == {'media_id': 7, 'status': 'skipped'}
        service.run_analysis.assert_not_called()
        redis_client.delete.assert_not_called()

    def test_lock_taken_over_is_not_released(self, redis_client, service):
        redis_client.get.return_value = b'another-task'

        tasks.analyze_media.run(7)

        redis_client.delete.assert_not_called()

    def test_lock_released_on_error(self, redis_client, service):
        service.run_analysis.side_effect = RuntimeError("database gone")

        with pytest.raises(RuntimeError):
            tasks.analyze_media.run(7)

        redis_client.delete.assert_called_once_with('gigsight:analysis-lock:7')

    def test_failed_status_reported(self, redis_client, service):
        service.run_analysis.return_value = AnalysisStatus.FAILED

        assert tasks.analyze_media.run(3)['status'] == 'failed'

    def test_misconfigured_service_marks_media_failed(self, redis_client, make_media):
        media = make_media()
        broken = ConfigurationError("storage.bucket is required for S3 storage")

        with patch.object(tasks, 'get_analysis_service', side_effect=broken):
            result = tasks.analyze_media.run(media.id)

        assert result == {'media_id': media.id, 'status': 'failed'}
        stored = MediaOperations.get_media(media.id)
        assert stored.analysis_status == AnalysisStatus.FAILED
        assert stored.analysis_error == 'Service configuration error'
        redis_client.delete.assert_called_once_with(f'gigsight:analysis-lock:{media.id}')


class TestRecovery:
    """Test the periodic stale-analysis sweep"""

    def test_requeues_through_celery(self, service):
        def recover(enqueue):
            enqueue(11)
            return {'requeued': [11], 'failed': []}
        service.recover_stale.side_effect = recover

        with patch.object(tasks.analyze_media, 'delay') as delay:
            outcome = tasks.recover_stale_analyses.run()

        delay.assert_called_once_with(11)
        assert outcome == {'requeued': [11], 'failed': []}

    def test_request_analysis_returns_task_id(self):
        with patch.object(tasks.analyze_media, 'delay', return_value=Mock(id='task-123')):
            assert tasks.request_analysis(5) == 'task-123'


class TestCeleryApp:

    def test_routes_and_schedule(self):
        from gigsight.api.celery_app import celery_app

        assert celery_app.conf.task_routes['gigsight.analyze_media'] == {'queue': 'analysis'}
        assert 'recover-stale-analyses' in celery_app.conf.beat_schedule
        assert 'gigsight.analyze_media' in celery_app.tasks
