"""Chat service layer.

All operations:
- Restrict visibility to chat collaborators (the owner is always one)
- Use E_CHAT_NOT_FOUND for both "missing" and "not visible" (prevent probing)
- Allow deletion by the owner only

Service functions correspond 1:1 with route handlers.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from polychat.auth.permissions import is_chat_owner
from polychat.db.models import (
    Chat,
    ChatCollaborator,
    Message,
    MessageResponse,
    MessageRevision,
    MessageStatus,
    utcnow,
)
from polychat.db.session import transaction
from polychat.errors import ApiErrorCode, ClientInputError, ConflictError, NotFoundError
from polychat.logging import get_logger
from polychat.schemas.chat import ChatOut, CreateChatOut, CreateChatRequest
from polychat.services.assist import generate_title
from polychat.services.classifier import CategoryClassifier
from polychat.services.llm import LLMRouter
from polychat.services.messages import get_visible_chat, get_visible_message, send_message

logger = get_logger(__name__)

# Error code on copied turns whose attempt was still open in the source chat
ERROR_NOT_COPIED = "E_NOT_COPIED"


def chat_to_out(chat: Chat) -> ChatOut:
    return ChatOut(
        id=chat.id,
        client_id=chat.client_id,
        owner_id=chat.owner_id,
        title=chat.title,
        pinned=chat.pinned,
        is_branch=chat.is_branch,
        branch_of_id=chat.branch_of_id,
        initial_prompt=chat.initial_prompt,
        stream_id=chat.stream_id,
        collaborators=chat.collaborator_ids,
        last_message_at=chat.last_message_at,
        created_at=chat.created_at,
    )


def _ensure_client_id_free(db: Session, client_id: str) -> None:
    taken = db.scalars(select(Chat.id).where(Chat.client_id == client_id)).first()
    if taken is not None:
        raise ConflictError(ApiErrorCode.E_CHAT_EXISTS, "A chat with this id already exists")


def _insert_chat(db: Session, viewer_id: str, client_id: str, **fields) -> Chat:
    chat = Chat(client_id=client_id, owner_id=viewer_id, **fields)
    chat.collaborators.append(ChatCollaborator(user_id=viewer_id))
    db.add(chat)
    db.flush()
    return chat


def _create_chat_row(
    db: Session, viewer_id: str, client_id: str, title: str, prompt: str
) -> Chat:
    with transaction(db):
        _ensure_client_id_free(db, client_id)
        return _insert_chat(db, viewer_id, client_id, title=title, initial_prompt=prompt)


async def create_chat(
    db: Session,
    viewer_id: str,
    request: CreateChatRequest,
    *,
    classifier: CategoryClassifier,
    llm_router: LLMRouter,
    assist_model: str,
    stream_base_url: str,
) -> CreateChatOut:
    """Create a chat owned by the viewer and send its first message.

    Raises:
        ConflictError(E_CHAT_EXISTS): client_id already used.
        ClientInputError / ClassificationError / ServerError: first message could
            not be resolved (the chat and the failed turn are kept).
    """
    if not request.prompt.strip():
        raise ClientInputError(ApiErrorCode.E_EMPTY_PROMPT, "Prompt must not be empty")

    exists = await run_in_threadpool(
        lambda: db.scalars(select(Chat.id).where(Chat.client_id == request.client_id)).first()
    )
    if exists is not None:
        raise ConflictError(ApiErrorCode.E_CHAT_EXISTS, "A chat with this id already exists")

    title = await generate_title(llm_router, assist_model, request.prompt)
    chat = await run_in_threadpool(
        _create_chat_row, db, viewer_id, request.client_id, title, request.prompt
    )
    logger.info("chat_created", chat_id=str(chat.id))

    sent = await send_message(
        db,
        viewer_id,
        chat.client_id,
        request.prompt,
        classifier=classifier,
        stream_base_url=stream_base_url,
        selection=request.selection,
        attachment_ids=request.attachment_ids,
    )
    await run_in_threadpool(db.refresh, chat)
    return CreateChatOut(chat=chat_to_out(chat), message=sent)


def list_chats(db: Session, viewer_id: str) -> list[ChatOut]:
    """Chats the viewer collaborates on: pinned first, then most recent activity."""
    chats = db.scalars(
        select(Chat)
        .join(ChatCollaborator, ChatCollaborator.chat_id == Chat.id)
        .where(ChatCollaborator.user_id == viewer_id)
        .order_by(Chat.pinned.desc(), Chat.last_message_at.desc(), Chat.id)
    ).all()
    return [chat_to_out(c) for c in chats]


def get_chat(db: Session, viewer_id: str, client_id: str) -> ChatOut:
    return chat_to_out(get_visible_chat(db, viewer_id, client_id))


def toggle_chat_pin(db: Session, viewer_id: str, client_id: str) -> ChatOut:
    with transaction(db):
        chat = get_visible_chat(db, viewer_id, client_id)
        chat.pinned = not chat.pinned
    logger.info("chat_pin_toggled", chat_id=str(chat.id), pinned=chat.pinned)
    return chat_to_out(chat)


def delete_chat(db: Session, viewer_id: str, client_id: str) -> None:
    """Delete a chat with all of its messages and streams. Owner only."""
    with transaction(db):
        chat = get_visible_chat(db, viewer_id, client_id)
        if not is_chat_owner(db, viewer_id, chat.id):
            raise NotFoundError(ApiErrorCode.E_CHAT_NOT_FOUND, "Chat not found")
        db.delete(chat)
    logger.info("chat_deleted", chat_id=str(chat.id))


def create_chat_branch(db: Session, viewer_id: str, message_id: UUID, client_id: str) -> ChatOut:
    """Copy a chat up to and including `message_id` into a new chat owned by the viewer.

    Copies each turn with its edit history and response branches. Streams are
    not copied; copied turns point at no stream.

    Raises:
        ClientInputError(E_INVALID_REQUEST): The message has no completed response.
        ConflictError(E_CHAT_EXISTS): client_id already used.
    """
    with transaction(db):
        source_message = get_visible_message(db, viewer_id, message_id)
        if source_message.status != MessageStatus.completed.value:
            raise ClientInputError(
                ApiErrorCode.E_INVALID_REQUEST, "Only completed messages can be branched"
            )
        _ensure_client_id_free(db, client_id)

        source_chat = db.get(Chat, source_message.chat_id)
        branch = _insert_chat(
            db,
            viewer_id,
            client_id,
            title=source_chat.title,
            initial_prompt=source_chat.initial_prompt,
            is_branch=True,
            branch_of_id=source_chat.id,
            last_message_at=utcnow(),
        )

        turns = db.scalars(
            select(Message)
            .where(
                Message.chat_id == source_chat.id,
                Message.turn_index <= source_message.turn_index,
            )
            .order_by(Message.turn_index)
        ).all()
        for turn in turns:
            _copy_turn(db, branch, turn)

    logger.info(
        "chat_branched",
        chat_id=str(branch.id),
        branch_of_id=str(source_chat.id),
        turn_count=len(turns),
    )
    return chat_to_out(branch)


def _copy_turn(db: Session, branch: Chat, turn: Message) -> None:
    if turn.status in (MessageStatus.completed.value, MessageStatus.error.value):
        status, error_code = turn.status, turn.error_code
    else:
        status, error_code = MessageStatus.error.value, ERROR_NOT_COPIED

    copy = Message(
        chat_id=branch.id,
        user_id=turn.user_id,
        role=turn.role,
        content=turn.content,
        status=status,
        error_code=error_code,
        model_id=turn.model_id,
        turn_index=turn.turn_index,
        selected_branch_index=turn.selected_branch_index,
    )
    db.add(copy)
    db.flush()

    for revision in turn.revisions:
        db.add(
            MessageRevision(
                message_id=copy.id,
                revision_index=revision.revision_index,
                content=revision.content,
            )
        )
    for response in turn.responses:
        db.add(
            MessageResponse(
                message_id=copy.id,
                branch_index=response.branch_index,
                stream_id=response.stream_id,
                content=response.content,
                model_id=response.model_id,
                model_name=response.model_name,
                provider=response.provider,
                prompt_tokens=response.prompt_tokens,
                completion_tokens=response.completion_tokens,
                total_tokens=response.total_tokens,
                latency_ms=response.latency_ms,
            )
        )
