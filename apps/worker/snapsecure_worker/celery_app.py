"""Celery application configuration."""

from celery import Celery

from snapsecure_api.settings import get_settings

settings = get_settings()

celery_app = Celery(
    "snapsecure_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    beat_schedule={
        "verify-ledger-integrity": {
            "task": "snapsecure_worker.tasks.verify_ledger_integrity",
            "schedule": float(settings.integrity_check_interval_seconds),
        },
        "reconcile-security-log": {
            "task": "snapsecure_worker.tasks.reconcile_security_log",
            "schedule": float(settings.integrity_check_interval_seconds),
        },
    },
)

# Import tasks to register them with Celery
# This must be done after celery_app is created
from snapsecure_worker import tasks  # noqa: F401, E402
