"""Celery application configuration.

Central configuration for Celery used by both the worker and beat.

Usage:
    celery -A fortunia.celery worker
    celery -A fortunia.celery beat

    # Or trigger a sweep by hand:
    from fortunia.tasks import retention_sweep
    retention_sweep.apply_async(queue="maintenance")
"""

from celery import Celery
from celery.schedules import crontab

from fortunia.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery("fortunia", include=["fortunia.tasks"])

# Configure from settings
celery_app.conf.broker_url = settings.effective_celery_broker_url
celery_app.conf.result_backend = settings.effective_celery_result_backend

# Task configuration
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.timezone = "UTC"
celery_app.conf.enable_utc = True

celery_app.conf.task_routes = {
    "retention_sweep": {"queue": "maintenance"},
}

# Default queue
celery_app.conf.task_default_queue = "default"

# Daily retention sweep at 03:00 UTC
celery_app.conf.beat_schedule = {
    "retention-sweep-daily": {
        "task": "retention_sweep",
        "schedule": crontab(hour=3, minute=0),
    },
}

# For testing: allow eager mode (synchronous execution)
celery_app.conf.task_always_eager = False
