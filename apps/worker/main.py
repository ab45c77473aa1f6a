"""Celery worker entrypoint.

Run with: celery -A apps.worker.main:celery_app worker -B -Q maintenance,default --loglevel=info

This module imports the Celery app and explicitly registers all tasks.
Task definitions are in polychat.tasks package - no autodiscovery.

Logging Convention:
- All task log entries include request_id, task_name, task_id when available
- Use configure_task_logging() at the start of each task to set up context

Queue Configuration:
- maintenance: the stale stream sweeper (scheduled by beat every minute)
- default: General background tasks
"""

from celery.signals import worker_process_init

from polychat.celery import celery_app
from polychat.config import get_settings
from polychat.logging import configure_logging, get_logger

# =============================================================================
# Task Registration (explicit imports - no autodiscovery)
# =============================================================================

# Import tasks to register them with Celery
from polychat.tasks import sweep_streams  # noqa: F401

# =============================================================================
# Worker Lifecycle
# =============================================================================


@worker_process_init.connect
def setup_worker_logging(**kwargs):
    """Configure structlog when the worker process starts.

    Worker logs use the same structured format as the API, with task_name and
    task_id attached by configure_task_logging().
    """
    configure_logging(json_format=get_settings().log_json)
    logger = get_logger(__name__)
    logger.info("celery_worker_started", queues="maintenance,default")


# Export celery_app for Celery to find
__all__ = ["celery_app"]
