"""
Celery application configuration.
"""

from celery import Celery

from pitrace.config import settings

# Create Celery app
celery_app = Celery(
    "pitrace",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "pitrace.workers.reaper",
    ],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Sweep pending payments past their approval window
    "reap-expired-payments": {
        "task": "pitrace.workers.reaper.reap_expired_payments",
        "schedule": float(settings.reaper_interval_seconds),
    },
}
