"""Celery tasks for Polychat.

Tasks are explicitly imported here to register them with Celery.
No autodiscovery - all tasks must be imported in this module.
"""

from polychat.tasks.sweep_streams import sweep_stale_streams_task

__all__ = ["sweep_stale_streams_task"]
