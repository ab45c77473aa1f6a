"""Chat and message API routes.

Route handlers for chats, their messages and generation attempts.
Routes are transport-only: each calls exactly one service function.

Chats are addressed by their client-generated `client_id`; messages by id.
Sending, retrying and editing only open a generation attempt and return
`{message_id, stream_id, stream_url}`; the response text is produced when a
client POSTs the stream id to /chat-stream.

All routes require authentication.
Response envelope: {"data": ...}
Error envelope: {"error": {"code": "...", "message": "...", "request_id": "..."}}
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from polychat.api.deps import get_classifier, get_db, get_llm_router
from polychat.auth.middleware import Viewer, get_viewer
from polychat.config import get_settings
from polychat.responses import success_response
from polychat.schemas.chat import (
    BranchChatRequest,
    CreateChatRequest,
    EditAndRetryRequest,
    RetryMessageRequest,
    SelectResponseRequest,
    SendMessageRequest,
)
from polychat.services import chats as chats_service
from polychat.services import messages as messages_service
from polychat.services.classifier import CategoryClassifier
from polychat.services.llm import LLMRouter

router = APIRouter(tags=["chats"])


# =============================================================================
# Chat Endpoints
# =============================================================================


@router.get("/chats")
def list_chats(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """List chats the viewer collaborates on, pinned first, then most recent."""
    chats = chats_service.list_chats(db, viewer.user_id)
    return success_response([c.model_dump(mode="json") for c in chats])


@router.post("/chats", status_code=201)
async def create_chat(
    body: CreateChatRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    classifier: Annotated[CategoryClassifier, Depends(get_classifier)],
    llm_router: Annotated[LLMRouter, Depends(get_llm_router)],
) -> dict:
    """Create a chat with a generated title and send its first message.

    Errors:
        E_CHAT_EXISTS (409): client_id already used.
        E_EMPTY_PROMPT (400): prompt is blank.
        E_UNKNOWN_MODEL (400): selection names an unknown model key.
        E_CLASSIFICATION_FAILED (502): auto selection could not classify the prompt.
        E_SERVER_ERROR (500): category has no best model.
    """
    settings = get_settings()
    result = await chats_service.create_chat(
        db,
        viewer.user_id,
        body,
        classifier=classifier,
        llm_router=llm_router,
        assist_model=settings.assist_model,
        stream_base_url=settings.stream_base_url,
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/chats/branch", status_code=201)
def create_chat_branch(
    body: BranchChatRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Copy a chat up to and including `message_id` into a new branch chat.

    Errors:
        E_MESSAGE_NOT_FOUND (404): message missing or not visible.
        E_CHAT_EXISTS (409): client_id already used.
    """
    result = chats_service.create_chat_branch(db, viewer.user_id, body.message_id, body.client_id)
    return success_response(result.model_dump(mode="json"))


@router.get("/chats/{client_id}")
def get_chat(
    client_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Get a chat by client id.

    Errors:
        E_CHAT_NOT_FOUND (404): Chat doesn't exist or viewer is not a collaborator.
    """
    result = chats_service.get_chat(db, viewer.user_id, client_id)
    return success_response(result.model_dump(mode="json"))


@router.post("/chats/{client_id}/pin")
def toggle_chat_pin(
    client_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Flip the chat's pinned flag and return the updated chat."""
    result = chats_service.toggle_chat_pin(db, viewer.user_id, client_id)
    return success_response(result.model_dump(mode="json"))


@router.delete("/chats/{client_id}", status_code=204)
def delete_chat(
    client_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    """Delete a chat and all its messages. Owner only.

    Errors:
        E_CHAT_NOT_FOUND (404): Chat doesn't exist or viewer is not the owner.
    """
    chats_service.delete_chat(db, viewer.user_id, client_id)
    return Response(status_code=204)


# =============================================================================
# Message Endpoints
# =============================================================================


@router.get("/chats/{client_id}/messages")
def list_messages(
    client_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """List a chat's turns in order, with revisions and response branches."""
    messages = messages_service.get_messages_by_chat_id(db, viewer.user_id, client_id)
    return success_response([m.model_dump(mode="json") for m in messages])


@router.post("/chats/{client_id}/messages", status_code=201)
async def send_message(
    client_id: str,
    body: SendMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    classifier: Annotated[CategoryClassifier, Depends(get_classifier)],
) -> dict:
    """Append a user turn and open its generation attempt.

    Without a selection the viewer's saved preference decides the model.

    Errors:
        E_CHAT_NOT_FOUND (404): Chat doesn't exist or viewer is not a collaborator.
        E_ATTACHMENT_NOT_FOUND (404): an attachment is missing or not owned.
        E_UNKNOWN_MODEL (400), E_CLASSIFICATION_FAILED (502), E_SERVER_ERROR (500):
            model resolution failed; the turn is kept with status error.
    """
    result = await messages_service.send_message(
        db,
        viewer.user_id,
        client_id,
        body.content,
        classifier=classifier,
        stream_base_url=get_settings().stream_base_url,
        selection=body.selection,
        attachment_ids=body.attachment_ids,
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/messages/{message_id}")
def get_message(
    message_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Get a single message.

    Errors:
        E_MESSAGE_NOT_FOUND (404): Message doesn't exist or is not visible.
    """
    result = messages_service.get_message(db, viewer.user_id, message_id)
    return success_response(result.model_dump(mode="json"))


@router.post("/messages/{message_id}/retry")
async def retry_message(
    message_id: UUID,
    body: RetryMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    classifier: Annotated[CategoryClassifier, Depends(get_classifier)],
) -> dict:
    """Generate another response with a fresh stream id.

    Errors:
        E_STREAM_IN_PROGRESS (409): the current attempt is still being produced.
    """
    result = await messages_service.retry_message(
        db,
        viewer.user_id,
        message_id,
        classifier=classifier,
        stream_base_url=get_settings().stream_base_url,
        selection=body.selection,
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/messages/{message_id}/edit")
async def edit_and_retry_message(
    message_id: UUID,
    body: EditAndRetryRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    classifier: Annotated[CategoryClassifier, Depends(get_classifier)],
) -> dict:
    """Replace the message content (keeping its history) and regenerate.

    Errors:
        E_EMPTY_PROMPT (400): content is blank.
        E_STREAM_IN_PROGRESS (409): the current attempt is still being produced.
    """
    result = await messages_service.edit_and_retry_message(
        db,
        viewer.user_id,
        message_id,
        body.content,
        classifier=classifier,
        stream_base_url=get_settings().stream_base_url,
        selection=body.selection,
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/messages/{message_id}/select-response")
def select_response(
    message_id: UUID,
    body: SelectResponseRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Choose which response branch the message shows."""
    result = messages_service.select_response(db, viewer.user_id, message_id, body.branch_index)
    return success_response(result.model_dump(mode="json"))


# =============================================================================
# Stream Body Endpoints
# =============================================================================


@router.get("/streams/{stream_id}/body")
def get_stream_body(
    stream_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Persisted text and status of a stream, for passive readers.

    Errors:
        E_UNAUTHENTICATED (401): unknown stream or viewer is not a collaborator.
    """
    result = messages_service.get_stream_body_for_stream(db, viewer.user_id, stream_id)
    return success_response(result.model_dump(mode="json"))


@router.get("/messages/{message_id}/stream-body")
def get_message_stream_body(
    message_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Persisted text and status of the message's latest attempt."""
    result = messages_service.get_stream_body_for_message(db, viewer.user_id, message_id)
    return success_response(result.model_dump(mode="json"))
