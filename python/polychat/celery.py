"""Celery application configuration.

Central configuration for Celery used by the worker (and beat) process.

Usage:
    from polychat.celery import celery_app

    # Run the sweeper once by hand:
    celery_app.send_task("sweep_stale_streams")
"""

from celery import Celery

from polychat.config import get_settings

settings = get_settings()

celery_app = Celery("polychat")

celery_app.conf.broker_url = settings.effective_celery_broker_url
celery_app.conf.result_backend = settings.effective_celery_result_backend

celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.timezone = "UTC"
celery_app.conf.enable_utc = True

celery_app.conf.task_routes = {
    "sweep_stale_streams": {"queue": "maintenance"},
}
celery_app.conf.task_default_queue = "default"

# Orphaned streams are sealed at most about a minute after they go stale
celery_app.conf.beat_schedule = {
    "sweep-stale-streams": {
        "task": "sweep_stale_streams",
        "schedule": 60.0,
    },
}
