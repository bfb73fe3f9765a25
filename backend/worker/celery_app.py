"""Celery application configuration.

This module sets up the Celery app with:
- Redis as broker and result backend
- Serialization and timezone settings
- Beat schedule for the minutely execution poll
"""

from celery import Celery
from celery.schedules import crontab

from app.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "crm_workflow_engine",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

# Configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task routing
    task_routes={
        "worker.tasks.executions.*": {"queue": "workflows"},
        "worker.tasks.*": {"queue": "default"},
    },

    # Default queue
    task_default_queue="default",

    # Result expiration (24 hours)
    result_expires=86400,

    # Task execution limits
    task_soft_time_limit=300,   # 5 min soft limit (raises SoftTimeLimitExceeded)
    task_time_limit=600,        # 10 min hard limit (kills the task)
    task_acks_late=True,        # Acknowledge after execution (safer)
    worker_prefetch_multiplier=1,  # One task at a time per worker process

    # Retry
    task_reject_on_worker_lost=True,
    task_acks_on_failure_or_timeout=True,

    # Beat schedule for periodic tasks
    beat_schedule={
        "process-workflow-executions": {
            "task": "worker.tasks.executions.process_due_executions",
            "schedule": crontab(minute="*/1"),  # Every minute
            "options": {"queue": "workflows"},
        },
    },

    # Auto-discover task modules
    include=[
        "worker.tasks.executions",
    ],
)
