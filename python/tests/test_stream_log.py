"""Tests for the durable stream chunk log.

Tests cover:
- Claim is granted once and only for pending streams
- Appends are ordered, move the stream to streaming, and are rejected once sealed
- Seal is exactly-once and stores the error code only for error
- Reads concatenate fragments in order and report the status atomically
- Stale stream listing ignores sealed and recently updated streams
"""

from datetime import timedelta

import pytest

from polychat.db.models import StreamStatus, utcnow
from polychat.db.session import transaction
from polychat.errors import ApiErrorCode, StreamTerminalConflict
from polychat.services import stream_log
from tests.factories import create_chat, create_turn


@pytest.fixture
def stream(db_session, viewer_id):
    chat = create_chat(db_session, viewer_id)
    _, stream = create_turn(db_session, chat, viewer_id)
    return stream


class TestClaimStream:
    def test_first_claim_wins(self, db_session, stream):
        with transaction(db_session):
            assert stream_log.claim_stream(db_session, stream.id) is True
        with transaction(db_session):
            assert stream_log.claim_stream(db_session, stream.id) is False

    def test_claim_of_sealed_stream_fails(self, db_session, stream):
        with transaction(db_session):
            stream_log.seal_stream(db_session, stream.id, StreamStatus.error, "E_SUPERSEDED")
        with transaction(db_session):
            assert stream_log.claim_stream(db_session, stream.id) is False

    def test_claim_of_unknown_stream_fails(self, db_session):
        assert stream_log.claim_stream(db_session, "does-not-exist") is False


class TestAppendChunk:
    def test_sequence_numbers_are_dense_and_ordered(self, db_session, stream):
        with transaction(db_session):
            seqs = [stream_log.append_chunk(db_session, stream.id, t) for t in ("a", "b", "c")]

        assert seqs == [0, 1, 2]
        body = stream_log.get_stream_body(db_session, stream.id)
        assert body.text == "abc"
        assert body.chunk_count == 3
        assert stream_log.count_chunks(db_session, stream.id) == 3

    def test_first_append_moves_stream_to_streaming(self, db_session, stream):
        with transaction(db_session):
            stream_log.append_chunk(db_session, stream.id, "Hi")

        assert stream_log.get_stream_body(db_session, stream.id).status == "streaming"

    @pytest.mark.parametrize("terminal", [StreamStatus.done, StreamStatus.error])
    def test_append_after_seal_is_rejected(self, db_session, stream, terminal):
        with transaction(db_session):
            stream_log.append_chunk(db_session, stream.id, "partial")
            stream_log.seal_stream(db_session, stream.id, terminal)

        with pytest.raises(StreamTerminalConflict) as exc_info:
            stream_log.append_chunk(db_session, stream.id, "late")
        db_session.rollback()

        assert exc_info.value.code == ApiErrorCode.E_STREAM_TERMINAL
        assert exc_info.value.stream_status == terminal.value
        body = stream_log.get_stream_body(db_session, stream.id)
        assert body.text == "partial"
        assert body.status == terminal.value


class TestSealStream:
    def test_seal_is_exactly_once(self, db_session, stream):
        with transaction(db_session):
            assert stream_log.seal_stream(db_session, stream.id, StreamStatus.done) is True
        with transaction(db_session):
            assert (
                stream_log.seal_stream(db_session, stream.id, StreamStatus.error, "E_INTERNAL")
                is False
            )

        body = stream_log.get_stream_body(db_session, stream.id)
        assert body.status == "done"
        assert body.error_code is None

    def test_error_seal_records_code(self, db_session, stream):
        with transaction(db_session):
            stream_log.seal_stream(
                db_session, stream.id, StreamStatus.error, "E_LLM_PROVIDER_DOWN"
            )

        body = stream_log.get_stream_body(db_session, stream.id)
        assert body.status == "error"
        assert body.error_code == "E_LLM_PROVIDER_DOWN"
        assert body.is_terminal

    def test_done_seal_drops_error_code(self, db_session, stream):
        with transaction(db_session):
            stream_log.seal_stream(db_session, stream.id, StreamStatus.done, "E_IGNORED")

        assert stream_log.get_stream_body(db_session, stream.id).error_code is None

    @pytest.mark.parametrize("status", [StreamStatus.pending, StreamStatus.streaming])
    def test_non_terminal_status_is_rejected(self, db_session, stream, status):
        with pytest.raises(ValueError):
            stream_log.seal_stream(db_session, stream.id, status)


class TestReads:
    def test_unknown_stream_has_no_body(self, db_session):
        assert stream_log.get_stream_body(db_session, "missing") is None

    def test_pending_stream_has_empty_body(self, db_session, stream):
        body = stream_log.get_stream_body(db_session, stream.id)
        assert body.text == ""
        assert body.status == "pending"
        assert not body.is_terminal

    def test_chunks_after_returns_only_newer_fragments(self, db_session, stream):
        with transaction(db_session):
            for text in ("one ", "two ", "three"):
                stream_log.append_chunk(db_session, stream.id, text)

        texts, status = stream_log.get_chunks_after(db_session, stream.id, 0)
        assert texts == ["two ", "three"]
        assert status == "streaming"

        texts, status = stream_log.get_chunks_after(db_session, stream.id, 2)
        assert texts == []

    def test_chunks_after_for_unknown_stream(self, db_session):
        assert stream_log.get_chunks_after(db_session, "missing", -1) == ([], None)


class TestListStaleStreams:
    def test_lists_only_open_streams_older_than_threshold(self, db_session, viewer_id):
        chat = create_chat(db_session, viewer_id)
        _, stale = create_turn(db_session, chat, viewer_id)
        _, fresh = create_turn(db_session, chat, viewer_id)
        _, sealed = create_turn(db_session, chat, viewer_id, stream_status=StreamStatus.done)

        old = utcnow() - timedelta(minutes=30)
        stale.updated_at = old
        sealed.updated_at = old
        db_session.commit()

        result = stream_log.list_stale_streams(db_session, utcnow() - timedelta(minutes=5))

        assert [s.id for s in result] == [stale.id]
        assert fresh.id not in {s.id for s in result}
