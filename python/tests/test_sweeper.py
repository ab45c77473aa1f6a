"""Tests for the stale stream sweeper.

Tests cover:
- Stale open streams are sealed E_ORPHANED_STREAM and their message marked error
- Recently updated and already sealed streams are untouched
- Streams with a liveness marker are skipped
- A message that moved on to a newer attempt keeps its status
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from polychat.db.models import Message, StreamLog, StreamStatus, utcnow
from polychat.services import stream_log
from polychat.services.stream_liveness import liveness_key
from polychat.tasks.sweep_streams import ERROR_ORPHANED_STREAM, sweep_stale_streams
from tests.factories import create_chat, create_turn


class FakeRedis:
    """Only what the liveness check touches."""

    def __init__(self, keys=()):
        self.keys = set(keys)

    def exists(self, key):
        return int(key in self.keys)


@pytest.fixture
def sweep(session_factory):
    with patch(
        "polychat.tasks.sweep_streams.get_session_factory", return_value=session_factory
    ):
        yield sweep_stale_streams


@pytest.fixture
def chat(db_session, viewer_id):
    return create_chat(db_session, viewer_id)


def age(db_session, stream, minutes=30):
    stream.updated_at = utcnow() - timedelta(minutes=minutes)
    db_session.commit()


class TestSweepStaleStreams:
    def test_seals_orphaned_stream(self, sweep, db_session, chat, viewer_id):
        message, stream = create_turn(
            db_session, chat, viewer_id, stream_status=StreamStatus.streaming, chunks=("Hal",)
        )
        age(db_session, stream)

        assert sweep(stale_minutes=5) == 1

        db_session.expire_all()
        saved_stream = db_session.get(StreamLog, stream.id)
        assert saved_stream.status == "error"
        assert saved_stream.error_code == ERROR_ORPHANED_STREAM
        saved_message = db_session.get(Message, message.id)
        assert saved_message.status == "error"
        assert saved_message.error_code == ERROR_ORPHANED_STREAM

    def test_fresh_and_sealed_streams_are_untouched(self, sweep, db_session, chat, viewer_id):
        create_turn(db_session, chat, viewer_id, stream_status=StreamStatus.streaming)
        _, sealed = create_turn(db_session, chat, viewer_id, stream_status=StreamStatus.done)
        age(db_session, sealed)

        assert sweep(stale_minutes=5) == 0

        db_session.expire_all()
        assert db_session.get(StreamLog, sealed.id).status == "done"

    def test_live_stream_is_skipped(self, sweep, db_session, chat, viewer_id):
        _, stream = create_turn(
            db_session, chat, viewer_id, stream_status=StreamStatus.streaming
        )
        age(db_session, stream)

        sealed = sweep(redis_client=FakeRedis({liveness_key(stream.id)}), stale_minutes=5)

        assert sealed == 0
        db_session.expire_all()
        assert db_session.get(StreamLog, stream.id).status == "streaming"

    def test_message_on_newer_attempt_is_untouched(self, sweep, db_session, chat, viewer_id):
        message, old = create_turn(db_session, chat, viewer_id)
        age(db_session, old)
        newer = stream_log.create_stream(db_session, message.id)
        message.stream_id = newer.id
        db_session.commit()

        assert sweep(stale_minutes=5) == 1

        db_session.expire_all()
        assert db_session.get(StreamLog, old.id).status == "error"
        assert db_session.get(Message, message.id).status == "pending"

    def test_nothing_stale(self, sweep):
        assert sweep(stale_minutes=5) == 0
