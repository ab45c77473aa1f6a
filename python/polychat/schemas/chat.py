"""Chat and Message Pydantic schemas.

Contains request and response models for chat, message and stream endpoints.
Messages expose their conversation-tree position explicitly: `turn_index`
orders turns within a chat and `selected_branch_index` picks which response
branch is shown.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from polychat.schemas.attachment import AttachmentOut
from polychat.schemas.selection import ModelSelection

# =============================================================================
# Response Schemas
# =============================================================================


class ChatOut(BaseModel):
    """Response schema for a chat."""

    id: UUID
    client_id: str
    owner_id: str
    title: str | None = None
    pinned: bool
    is_branch: bool
    branch_of_id: UUID | None = None
    initial_prompt: str | None = None
    stream_id: str | None = None
    collaborators: list[str]
    last_message_at: datetime
    created_at: datetime


class RevisionOut(BaseModel):
    """One entry of a message's prompt edit history."""

    revision_index: int
    content: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ResponseOut(BaseModel):
    """A completed response branch for a message."""

    branch_index: int
    stream_id: str
    content: str
    model_name: str
    provider: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageOut(BaseModel):
    """Response schema for a message (one conversation turn)."""

    id: UUID
    chat_id: UUID
    user_id: str
    role: str
    content: str
    status: str  # "pending" | "streaming" | "completed" | "error"
    error_code: str | None = None
    stream_id: str | None = None
    model_key: str | None = None
    turn_index: int
    selected_branch_index: int
    revisions: list[RevisionOut]
    responses: list[ResponseOut]
    attachments: list[AttachmentOut]
    created_at: datetime
    updated_at: datetime


class SendMessageOut(BaseModel):
    """Where to read the response for a freshly created generation attempt."""

    message_id: UUID
    stream_id: str
    stream_url: str


class CreateChatOut(BaseModel):
    chat: ChatOut
    message: SendMessageOut


class StreamBodyOut(BaseModel):
    """Everything appended to a stream so far plus its status."""

    stream_id: str
    text: str
    status: str  # "pending" | "streaming" | "done" | "error"
    error_code: str | None = None


# =============================================================================
# Request Schemas
# =============================================================================


class CreateChatRequest(BaseModel):
    client_id: str = Field(min_length=1, max_length=128)
    prompt: str = Field(min_length=1)
    selection: ModelSelection | None = None
    attachment_ids: list[UUID] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class BranchChatRequest(BaseModel):
    """Copy a chat up to and including `message_id` into a new chat."""

    message_id: UUID
    client_id: str = Field(min_length=1, max_length=128)

    model_config = ConfigDict(extra="forbid")


class SendMessageRequest(BaseModel):
    content: str = Field(min_length=1)
    selection: ModelSelection | None = None
    attachment_ids: list[UUID] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class RetryMessageRequest(BaseModel):
    selection: ModelSelection | None = None

    model_config = ConfigDict(extra="forbid")


class EditAndRetryRequest(BaseModel):
    content: str = Field(min_length=1)
    selection: ModelSelection | None = None

    model_config = ConfigDict(extra="forbid")


class SelectResponseRequest(BaseModel):
    branch_index: int = Field(ge=0)

    model_config = ConfigDict(extra="forbid")


class ChatStreamRequest(BaseModel):
    """Body of POST /chat-stream."""

    stream_id: str = Field(alias="streamId", min_length=1, max_length=128)
