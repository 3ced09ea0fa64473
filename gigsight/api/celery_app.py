"""
Celery configuration for GigSight background analysis
"""

from celery import Celery
from kombu import Exchange, Queue
from datetime import timedelta

from ..config import load_config

config = load_config()
celery_config = config.get('celery', {})

# Initialize Celery
celery_app = Celery('gigsight')

# Configuration
celery_app.conf.update(
    # Broker settings (Redis)
    broker_url=celery_config.get('broker_url', 'redis://localhost:6379/0'),
    result_backend=celery_config.get('result_backend', 'redis://localhost:6379/0'),

    # Task settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Task routing
    task_routes={
        'gigsight.analyze_media': {'queue': 'analysis'},
        'gigsight.recover_stale_analyses': {'queue': 'maintenance'},
    },

    # Queue configuration
    task_queues=(
        Queue('analysis', Exchange('analysis'), routing_key='analysis'),
        Queue('maintenance', Exchange('maintenance'), routing_key='maintenance'),
    ),

    # Worker settings; analyses are long and uneven, so take one at a time
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=200,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_ignore_result=False,

    # Time limits
    task_soft_time_limit=celery_config.get('soft_time_limit', 300),
    task_time_limit=celery_config.get('time_limit', 360),

    # Result backend settings
    result_expires=3600,  # Results expire after 1 hour

    # Beat schedule for periodic tasks
    beat_schedule={
        'recover-stale-analyses': {
            'task': 'gigsight.recover_stale_analyses',
            'schedule': timedelta(minutes=celery_config.get('recovery_interval_minutes', 10)),
        },
    },

    # Monitoring
    worker_send_task_events=True,
    task_send_sent_event=True,
)

# Import task modules to register them
celery_app.autodiscover_tasks(['gigsight.api'], force=True)
