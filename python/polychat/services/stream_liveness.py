"""Stream liveness marker: Redis keys that track streams with a running producer.

- Set when a producer claims a stream, before the first fragment
- Refreshed on every appended fragment (sliding TTL)
- Cleared once the stream is sealed, even on cancellation/exception
- Read by the sweeper to distinguish running streams from orphaned ones

Redis key: stream_active:{stream_id}
TTL: 600 seconds (refreshed on each fragment)

Redis failures never fail a stream; they are logged and ignored.
"""

from polychat.logging import get_logger

logger = get_logger(__name__)

LIVENESS_TTL_SECONDS = 600


def liveness_key(stream_id: str) -> str:
    return f"stream_active:{stream_id}"


async def set_liveness_marker(redis_client, stream_id: str) -> None:
    """Set the liveness marker when a producer starts."""
    if redis_client is None:
        return
    try:
        redis_client.setex(liveness_key(stream_id), LIVENESS_TTL_SECONDS, "1")
    except Exception as e:
        logger.warning("liveness_set_failed", stream_id=stream_id, error=str(e))


async def refresh_liveness_marker(redis_client, stream_id: str) -> None:
    """Refresh the liveness marker TTL (sliding window)."""
    if redis_client is None:
        return
    try:
        redis_client.expire(liveness_key(stream_id), LIVENESS_TTL_SECONDS)
    except Exception as e:
        logger.debug("liveness_refresh_failed", stream_id=stream_id, error=str(e))


async def clear_liveness_marker(redis_client, stream_id: str) -> None:
    """Clear the liveness marker once the stream is sealed."""
    if redis_client is None:
        return
    try:
        redis_client.delete(liveness_key(stream_id))
    except Exception as e:
        logger.warning("liveness_clear_failed", stream_id=stream_id, error=str(e))


def check_liveness_marker(redis_client, stream_id: str) -> bool:
    """True if the stream currently has a liveness marker."""
    if redis_client is None:
        return False
    try:
        return bool(redis_client.exists(liveness_key(stream_id)))
    except Exception as e:
        logger.warning("liveness_check_failed", stream_id=stream_id, error=str(e))
        return False
