"""Message service layer: sending turns, retries, branch selection and reads.

Every generation attempt gets a fresh stream (new stream_id); a message
always points at its latest attempt. Sending is split in two phases:

1. In one transaction: create the message (or update it for a retry), its
   revision entry and a pending stream.
2. Resolve the model (may call the classifier) and store it on the message.

If resolution fails the attempt is closed at once: the stream is sealed
`error` and the message marked `error` with the failure's code, then the
error is raised to the caller. The turn stays visible and can be retried.

Access: chats are visible to their collaborators only. Chat and message
lookups use E_CHAT_NOT_FOUND / E_MESSAGE_NOT_FOUND for both "missing" and
"not visible"; stream reads use Unauthorized for both.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from polychat.auth.permissions import can_read_message, is_chat_collaborator
from polychat.db.models import (
    OPEN_STREAM_STATUSES,
    AIModel,
    Attachment,
    Chat,
    Message,
    MessageAttachment,
    MessageResponse,
    MessageRevision,
    MessageRole,
    MessageStatus,
    StreamLog,
    StreamStatus,
    utcnow,
)
from polychat.db.session import transaction
from polychat.errors import (
    ApiError,
    ApiErrorCode,
    ClientInputError,
    ConflictError,
    NotFoundError,
    UnauthorizedError,
)
from polychat.logging import get_logger
from polychat.schemas.attachment import AttachmentOut
from polychat.schemas.chat import (
    MessageOut,
    ResponseOut,
    RevisionOut,
    SendMessageOut,
    StreamBodyOut,
)
from polychat.schemas.selection import ModelSelection
from polychat.services import stream_log
from polychat.services.classifier import CategoryClassifier
from polychat.services.preferences import get_user_model_selection
from polychat.services.resolver import resolve_model

logger = get_logger(__name__)

# Error code for a pending attempt replaced by a retry before anyone drove it
ERROR_SUPERSEDED = "E_SUPERSEDED"


@dataclass(frozen=True)
class _Attempt:
    message_id: UUID
    stream_id: str
    content: str


# =============================================================================
# Lookups and mapping
# =============================================================================


def get_visible_chat(db: Session, viewer_id: str, client_id: str) -> Chat:
    """The chat with `client_id` if the viewer collaborates on it.

    Raises:
        NotFoundError(E_CHAT_NOT_FOUND): Missing or not visible.
    """
    chat = db.scalars(select(Chat).where(Chat.client_id == client_id)).first()
    if chat is None or not is_chat_collaborator(db, viewer_id, chat.id):
        raise NotFoundError(ApiErrorCode.E_CHAT_NOT_FOUND, "Chat not found")
    return chat


def get_visible_message(db: Session, viewer_id: str, message_id: UUID) -> Message:
    """Raises NotFoundError(E_MESSAGE_NOT_FOUND) when missing or not visible."""
    if not can_read_message(db, viewer_id, message_id):
        raise NotFoundError(ApiErrorCode.E_MESSAGE_NOT_FOUND, "Message not found")
    return db.get(Message, message_id)


def message_to_out(db: Session, message: Message) -> MessageOut:
    model = db.get(AIModel, message.model_id) if message.model_id else None
    return MessageOut(
        id=message.id,
        chat_id=message.chat_id,
        user_id=message.user_id,
        role=message.role,
        content=message.content,
        status=message.status,
        error_code=message.error_code,
        stream_id=message.stream_id,
        model_key=model.key if model else None,
        turn_index=message.turn_index,
        selected_branch_index=message.selected_branch_index,
        revisions=[RevisionOut.model_validate(r) for r in message.revisions],
        responses=[ResponseOut.model_validate(r) for r in message.responses],
        attachments=[
            AttachmentOut.model_validate(link.attachment) for link in message.attachment_links
        ],
        created_at=message.created_at,
        updated_at=message.updated_at,
    )


def _owned_attachments(
    db: Session, viewer_id: str, attachment_ids: list[UUID]
) -> list[Attachment]:
    if not attachment_ids:
        return []
    unique_ids = list(dict.fromkeys(attachment_ids))
    found = db.scalars(
        select(Attachment).where(Attachment.id.in_(unique_ids), Attachment.owner_id == viewer_id)
    ).all()
    if len(found) != len(unique_ids):
        raise NotFoundError(ApiErrorCode.E_ATTACHMENT_NOT_FOUND, "Attachment not found")
    return list(found)


def _require_prompt(content: str) -> None:
    if not content or not content.strip():
        raise ClientInputError(ApiErrorCode.E_EMPTY_PROMPT, "Prompt must not be empty")


# =============================================================================
# Phase 1: create the attempt (sync, one transaction)
# =============================================================================


def _create_turn(
    db: Session,
    viewer_id: str,
    chat: Chat,
    content: str,
    attachment_ids: list[UUID],
) -> _Attempt:
    """Append a new user turn with a pending stream. Does not commit."""
    attachments = _owned_attachments(db, viewer_id, attachment_ids)

    last_turn = db.execute(
        select(func.max(Message.turn_index)).where(Message.chat_id == chat.id)
    ).scalar_one_or_none()

    message = Message(
        chat_id=chat.id,
        user_id=viewer_id,
        role=MessageRole.user.value,
        content=content,
        status=MessageStatus.pending.value,
        turn_index=0 if last_turn is None else last_turn + 1,
        selected_branch_index=0,
    )
    db.add(message)
    db.flush()

    db.add(MessageRevision(message_id=message.id, revision_index=0, content=content))
    for attachment in attachments:
        db.add(MessageAttachment(message_id=message.id, attachment_id=attachment.id))

    stream = stream_log.create_stream(db, message.id)
    message.stream_id = stream.id
    chat.stream_id = stream.id
    chat.last_message_at = utcnow()
    db.flush()
    return _Attempt(message_id=message.id, stream_id=stream.id, content=content)


def _prepare_send(
    db: Session,
    viewer_id: str,
    client_id: str,
    content: str,
    attachment_ids: list[UUID],
) -> _Attempt:
    with transaction(db):
        chat = get_visible_chat(db, viewer_id, client_id)
        return _create_turn(db, viewer_id, chat, content, attachment_ids)


def _prepare_retry(
    db: Session,
    viewer_id: str,
    message_id: UUID,
    new_content: str | None,
) -> _Attempt:
    """Open a fresh attempt on an existing message.

    Raises:
        ConflictError(E_STREAM_IN_PROGRESS): The current attempt is being produced.
    """
    with transaction(db):
        message = get_visible_message(db, viewer_id, message_id)

        current = db.get(StreamLog, message.stream_id) if message.stream_id else None
        if current is not None and current.status in OPEN_STREAM_STATUSES:
            if current.status == StreamStatus.streaming.value or current.claimed_at is not None:
                raise ConflictError(
                    ApiErrorCode.E_STREAM_IN_PROGRESS, "A response is still being generated"
                )
            stream_log.seal_stream(db, current.id, StreamStatus.error, ERROR_SUPERSEDED)

        if new_content is not None:
            next_revision = len(message.revisions)
            db.add(
                MessageRevision(
                    message_id=message.id, revision_index=next_revision, content=new_content
                )
            )
            message.content = new_content

        stream = stream_log.create_stream(db, message.id)
        message.stream_id = stream.id
        message.status = MessageStatus.pending.value
        message.error_code = None

        chat = db.get(Chat, message.chat_id)
        chat.stream_id = stream.id
        chat.last_message_at = utcnow()
        db.flush()
        return _Attempt(message_id=message.id, stream_id=stream.id, content=message.content)


# =============================================================================
# Phase 2: resolve the model (async), then record it or close the attempt
# =============================================================================


def _assign_model(db: Session, attempt: _Attempt, model_id: UUID) -> None:
    with transaction(db):
        db.execute(
            update(Message)
            .where(Message.id == attempt.message_id, Message.stream_id == attempt.stream_id)
            .values(model_id=model_id, updated_at=utcnow())
        )


def _fail_attempt(db: Session, attempt: _Attempt, error_code: str) -> None:
    with transaction(db):
        if stream_log.seal_stream(db, attempt.stream_id, StreamStatus.error, error_code):
            db.execute(
                update(Message)
                .where(Message.id == attempt.message_id, Message.stream_id == attempt.stream_id)
                .values(
                    status=MessageStatus.error.value, error_code=error_code, updated_at=utcnow()
                )
            )


async def _resolve_attempt(
    db: Session,
    viewer_id: str,
    attempt: _Attempt,
    selection: ModelSelection | None,
    classifier: CategoryClassifier,
    stream_base_url: str,
) -> SendMessageOut:
    if selection is None:
        selection = await run_in_threadpool(get_user_model_selection, db, viewer_id)

    try:
        model = await resolve_model(db, selection, attempt.content, classifier)
    except ApiError as e:
        logger.warning(
            "model_resolution_failed",
            message_id=str(attempt.message_id),
            stream_id=attempt.stream_id,
            error_code=e.code.value,
        )
        await run_in_threadpool(_fail_attempt, db, attempt, e.code.value)
        raise

    await run_in_threadpool(_assign_model, db, attempt, model.id)
    logger.info(
        "message_attempt_ready",
        message_id=str(attempt.message_id),
        stream_id=attempt.stream_id,
        model_key=model.key,
    )
    return SendMessageOut(
        message_id=attempt.message_id,
        stream_id=attempt.stream_id,
        stream_url=f"{stream_base_url.rstrip('/')}/chat-stream",
    )


# =============================================================================
# Operations
# =============================================================================


async def send_message(
    db: Session,
    viewer_id: str,
    client_id: str,
    content: str,
    *,
    classifier: CategoryClassifier,
    stream_base_url: str,
    selection: ModelSelection | None = None,
    attachment_ids: list[UUID] | None = None,
) -> SendMessageOut:
    """Append a user turn to a chat and open its first generation attempt.

    When `selection` is None the viewer's preference decides.

    Raises:
        NotFoundError: Chat or attachment not visible.
        ClientInputError / ClassificationError / ServerError: Model resolution failed.
    """
    _require_prompt(content)
    attempt = await run_in_threadpool(
        _prepare_send, db, viewer_id, client_id, content, attachment_ids or []
    )
    return await _resolve_attempt(db, viewer_id, attempt, selection, classifier, stream_base_url)


async def retry_message(
    db: Session,
    viewer_id: str,
    message_id: UUID,
    *,
    classifier: CategoryClassifier,
    stream_base_url: str,
    selection: ModelSelection | None = None,
) -> SendMessageOut:
    """Generate another response for a message with a fresh stream and re-resolved model."""
    attempt = await run_in_threadpool(_prepare_retry, db, viewer_id, message_id, None)
    return await _resolve_attempt(db, viewer_id, attempt, selection, classifier, stream_base_url)


async def edit_and_retry_message(
    db: Session,
    viewer_id: str,
    message_id: UUID,
    content: str,
    *,
    classifier: CategoryClassifier,
    stream_base_url: str,
    selection: ModelSelection | None = None,
) -> SendMessageOut:
    """Replace the prompt (keeping the edit history) and regenerate."""
    _require_prompt(content)
    attempt = await run_in_threadpool(_prepare_retry, db, viewer_id, message_id, content)
    return await _resolve_attempt(db, viewer_id, attempt, selection, classifier, stream_base_url)


def select_response(
    db: Session, viewer_id: str, message_id: UUID, branch_index: int
) -> MessageOut:
    """Show another response branch for a message.

    Raises:
        ClientInputError(E_INVALID_REQUEST): The message has no such branch.
    """
    with transaction(db):
        message = get_visible_message(db, viewer_id, message_id)
        exists = db.scalars(
            select(MessageResponse.id).where(
                MessageResponse.message_id == message_id,
                MessageResponse.branch_index == branch_index,
            )
        ).first()
        if exists is None:
            raise ClientInputError(ApiErrorCode.E_INVALID_REQUEST, "Unknown response branch")
        message.selected_branch_index = branch_index
        message.updated_at = utcnow()

    return message_to_out(db, message)


def get_messages_by_chat_id(db: Session, viewer_id: str, client_id: str) -> list[MessageOut]:
    """All turns of a chat in order."""
    chat = get_visible_chat(db, viewer_id, client_id)
    messages = db.scalars(
        select(Message).where(Message.chat_id == chat.id).order_by(Message.turn_index)
    ).all()
    return [message_to_out(db, m) for m in messages]


def get_message(db: Session, viewer_id: str, message_id: UUID) -> MessageOut:
    return message_to_out(db, get_visible_message(db, viewer_id, message_id))


def _body_out(db: Session, stream_id: str) -> StreamBodyOut:
    body = stream_log.get_stream_body(db, stream_id)
    return StreamBodyOut(
        stream_id=stream_id, text=body.text, status=body.status, error_code=body.error_code
    )


def get_stream_body_for_stream(db: Session, viewer_id: str, stream_id: str) -> StreamBodyOut:
    """Persisted text and status of a stream.

    Raises:
        UnauthorizedError: Unknown stream or viewer is not a collaborator.
    """
    stream = stream_log.get_stream(db, stream_id)
    if stream is None or not can_read_message(db, viewer_id, stream.message_id):
        raise UnauthorizedError()
    return _body_out(db, stream_id)


def get_stream_body_for_message(db: Session, viewer_id: str, message_id: UUID) -> StreamBodyOut:
    """Persisted text and status of a message's latest attempt.

    Raises:
        UnauthorizedError: Unknown message, no attempt yet, or not a collaborator.
    """
    if not can_read_message(db, viewer_id, message_id):
        raise UnauthorizedError()
    message = db.get(Message, message_id)
    if message.stream_id is None:
        raise UnauthorizedError()
    return _body_out(db, message.stream_id)
