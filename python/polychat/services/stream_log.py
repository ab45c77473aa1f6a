"""Durable, append-only stream chunk log.

One StreamLog row per generation attempt plus one StreamChunk row per text
fragment. Status transitions:

    pending -> streaming -> done | error
    pending -> error

done and error are terminal. Every transition is a conditional UPDATE
(WHERE status IN (...)), so concurrent writers cannot both win:

- claim_stream: at most one producer claims a pending stream
- append_chunk: rejected with StreamTerminalConflict once the stream is sealed
- seal_stream: exactly-once; later seals report False and change nothing

None of these functions commit. Callers wrap them in `transaction(db)`.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from polychat.db.models import (
    OPEN_STREAM_STATUSES,
    TERMINAL_STREAM_STATUSES,
    StreamChunk,
    StreamLog,
    StreamStatus,
    utcnow,
)
from polychat.errors import StreamTerminalConflict
from polychat.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StreamBody:
    """Snapshot of a stream: everything appended so far plus its status."""

    text: str
    status: str
    chunk_count: int = 0
    error_code: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STREAM_STATUSES


def create_stream(db: Session, message_id: UUID, stream_id: str | None = None) -> StreamLog:
    """Create a pending stream for one generation attempt of a message."""
    stream = StreamLog(
        id=stream_id or str(uuid4()),
        message_id=message_id,
        status=StreamStatus.pending.value,
        chunk_count=0,
    )
    db.add(stream)
    db.flush()
    return stream


def get_stream(db: Session, stream_id: str) -> StreamLog | None:
    return db.get(StreamLog, stream_id)


def claim_stream(db: Session, stream_id: str) -> bool:
    """Claim a pending stream for production.

    Returns:
        True if this call claimed the stream, False if it was already claimed
        or is no longer pending.
    """
    now = utcnow()
    result = db.execute(
        update(StreamLog)
        .where(
            StreamLog.id == stream_id,
            StreamLog.status == StreamStatus.pending.value,
            StreamLog.claimed_at.is_(None),
        )
        .values(claimed_at=now, updated_at=now)
    )
    return result.rowcount == 1


def append_chunk(db: Session, stream_id: str, text: str) -> int:
    """Append one fragment and move the stream to `streaming`.

    Returns:
        The sequence number assigned to the fragment (0-based).

    Raises:
        StreamTerminalConflict: If the stream is already done/error.
    """
    result = db.execute(
        update(StreamLog)
        .where(
            StreamLog.id == stream_id,
            StreamLog.status.in_(OPEN_STREAM_STATUSES),
        )
        .values(
            chunk_count=StreamLog.chunk_count + 1,
            status=StreamStatus.streaming.value,
            updated_at=utcnow(),
        )
    )
    if result.rowcount == 0:
        status = db.execute(
            select(StreamLog.status).where(StreamLog.id == stream_id)
        ).scalar_one_or_none()
        raise StreamTerminalConflict(stream_id, status)

    seq = db.execute(
        select(StreamLog.chunk_count).where(StreamLog.id == stream_id)
    ).scalar_one() - 1
    db.add(StreamChunk(stream_id=stream_id, seq=seq, text=text))
    db.flush()
    return seq


def seal_stream(
    db: Session,
    stream_id: str,
    status: StreamStatus,
    error_code: str | None = None,
) -> bool:
    """Move an open stream to a terminal status.

    Returns:
        True if this call sealed the stream, False if it was already terminal.
    """
    if status.value not in TERMINAL_STREAM_STATUSES:
        raise ValueError(f"Cannot seal stream with non-terminal status {status.value}")

    now = utcnow()
    result = db.execute(
        update(StreamLog)
        .where(
            StreamLog.id == stream_id,
            StreamLog.status.in_(OPEN_STREAM_STATUSES),
        )
        .values(
            status=status.value,
            error_code=error_code if status == StreamStatus.error else None,
            finished_at=now,
            updated_at=now,
        )
    )
    sealed = result.rowcount == 1
    if not sealed:
        logger.info("stream_seal_skipped_already_terminal", stream_id=stream_id)
    return sealed


def get_stream_body(db: Session, stream_id: str) -> StreamBody | None:
    """Concatenate every fragment in sequence order."""
    stream = db.get(StreamLog, stream_id)
    if stream is None:
        return None
    # Re-read the header; a long-lived session may hold a stale copy
    db.refresh(stream)
    texts = db.execute(
        select(StreamChunk.text)
        .where(StreamChunk.stream_id == stream_id)
        .order_by(StreamChunk.seq)
    ).scalars()
    return StreamBody(
        text="".join(texts),
        status=stream.status,
        chunk_count=stream.chunk_count,
        error_code=stream.error_code,
    )


def get_chunks_after(db: Session, stream_id: str, after_seq: int) -> tuple[list[str], str | None]:
    """Fragments with seq > after_seq, plus the stream status read in the same transaction.

    The status is read first: if it is terminal, the fragments returned are
    complete.
    """
    status = db.execute(
        select(StreamLog.status).where(StreamLog.id == stream_id)
    ).scalar_one_or_none()
    texts = list(
        db.execute(
            select(StreamChunk.text)
            .where(StreamChunk.stream_id == stream_id, StreamChunk.seq > after_seq)
            .order_by(StreamChunk.seq)
        ).scalars()
    )
    return texts, status


def list_stale_streams(db: Session, older_than: datetime, limit: int = 100) -> list[StreamLog]:
    """Open streams whose header has not been updated since `older_than`."""
    return list(
        db.execute(
            select(StreamLog)
            .where(
                StreamLog.status.in_(OPEN_STREAM_STATUSES),
                StreamLog.updated_at < older_than,
            )
            .order_by(StreamLog.updated_at)
            .limit(limit)
        ).scalars()
    )


def count_chunks(db: Session, stream_id: str) -> int:
    return db.execute(
        select(func.count()).select_from(StreamChunk).where(StreamChunk.stream_id == stream_id)
    ).scalar_one()
