"""Stale stream sweeper.

A stream whose producer died (process crash, deploy) would otherwise stay
open forever and followers would wait on it. The sweeper:

- Selects open streams (pending/streaming) not updated for STREAM_STALE_MINUTES
- Skips streams with a stream_active:{stream_id} liveness marker in Redis
- Seals the rest as error (E_ORPHANED_STREAM) via the conditional seal
- Marks the owning message error if it still points at that stream
- Logs count + oldest age
"""

from datetime import UTC, datetime, timedelta

import redis
from sqlalchemy import update

from polychat.celery import celery_app
from polychat.config import get_settings
from polychat.db.models import Message, MessageStatus, StreamStatus, utcnow
from polychat.db.session import get_session_factory
from polychat.logging import clear_task_context, configure_task_logging, get_logger
from polychat.services import stream_log
from polychat.services.stream_liveness import check_liveness_marker

logger = get_logger(__name__)

ERROR_ORPHANED_STREAM = "E_ORPHANED_STREAM"


def _as_utc(value: datetime) -> datetime:
    # Some backends hand back naive datetimes for timezone-aware columns
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def sweep_stale_streams(redis_client=None, stale_minutes: int | None = None) -> int:
    """Seal orphaned open streams.

    Args:
        redis_client: Redis client for liveness checks. If None, skip liveness check.
        stale_minutes: Inactivity threshold. Defaults to STREAM_STALE_MINUTES.

    Returns:
        Number of streams sealed.
    """
    if stale_minutes is None:
        stale_minutes = get_settings().stream_stale_minutes

    session_factory = get_session_factory()
    db = session_factory()
    sealed_count = 0

    try:
        now = datetime.now(UTC)
        stale = stream_log.list_stale_streams(db, now - timedelta(minutes=stale_minutes))
        if not stale:
            return 0

        oldest_age_seconds = 0
        for stream in stale:
            age_seconds = int((now - _as_utc(stream.updated_at)).total_seconds())
            oldest_age_seconds = max(oldest_age_seconds, age_seconds)

            if check_liveness_marker(redis_client, stream.id):
                logger.debug("sweeper_skip_active", stream_id=stream.id, age_seconds=age_seconds)
                continue

            if not stream_log.seal_stream(
                db, stream.id, StreamStatus.error, ERROR_ORPHANED_STREAM
            ):
                continue

            db.execute(
                update(Message)
                .where(Message.id == stream.message_id, Message.stream_id == stream.id)
                .values(
                    status=MessageStatus.error.value,
                    error_code=ERROR_ORPHANED_STREAM,
                    updated_at=utcnow(),
                )
            )
            sealed_count += 1
            logger.info("sweeper_sealed", stream_id=stream.id, age_seconds=age_seconds)

        db.commit()

        if sealed_count > 0:
            logger.info(
                "sweeper_complete",
                sealed_count=sealed_count,
                total_stale=len(stale),
                oldest_age_seconds=oldest_age_seconds,
            )
        return sealed_count

    except Exception as e:
        logger.error("sweeper_error", error=str(e))
        db.rollback()
        return 0
    finally:
        db.close()


@celery_app.task(bind=True, max_retries=0, name="sweep_stale_streams")
def sweep_stale_streams_task(self, request_id: str | None = None) -> dict:
    """Celery beat entry point for the sweeper."""
    configure_task_logging(
        request_id=request_id, task_name="sweep_stale_streams", task_id=self.request.id
    )
    try:
        settings = get_settings()
        redis_client = redis.from_url(settings.redis_url) if settings.redis_url else None
        sealed = sweep_stale_streams(redis_client=redis_client)
        return {"status": "ok", "sealed": sealed}
    finally:
        clear_task_context()
