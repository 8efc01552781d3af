"""Celery application configuration and beat schedule."""

from celery import Celery
from celery.schedules import crontab

from fundrec.config import get_settings

settings = get_settings()

celery_app = Celery(
    "fundrec",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "fundrec.tasks.personalization_tasks",
        "fundrec.tasks.maintenance_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    task_track_started=True,
    task_time_limit=1800,
    task_soft_time_limit=1700,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.conf.beat_schedule = {
    "purge-expired-events": {
        "task": "fundrec.tasks.maintenance_tasks.purge_expired_events",
        "schedule": crontab(minute=30, hour=3),
    },
    "aggregate-preferences": {
        "task": "fundrec.tasks.personalization_tasks.aggregate_preferences",
        "schedule": crontab(minute=0, hour=4),
    },
    "compute-co-occurrences": {
        "task": "fundrec.tasks.personalization_tasks.compute_co_occurrences",
        "schedule": crontab(minute=0, hour=5),
    },
    "compute-daily-metrics": {
        "task": "fundrec.tasks.personalization_tasks.compute_daily_metrics",
        "schedule": crontab(minute=0, hour=6),
    },
}
