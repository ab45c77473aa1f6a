"""SQLAlchemy ORM models for Polychat.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Enumerated columns are stored as text guarded by CHECK constraints; the
Python enums below are the source of truth for their values.

Identifiers and timestamps are generated application-side so the schema
behaves the same on every backend the tests and deployments use.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utcnow() -> datetime:
    """Timezone-aware current time used for all timestamp defaults."""
    return datetime.now(UTC)


def _in_check(column: str, enum_cls: type[PyEnum]) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


# =============================================================================
# Enums
# =============================================================================


class Category(str, PyEnum):
    """The closed set of content categories used for automatic model routing."""

    programming = "Programming"
    roleplay = "Roleplay"
    marketing = "Marketing"
    seo = "SEO"
    technology = "Technology"
    science = "Science"
    translation = "Translation"
    legal = "Legal"
    finance = "Finance"
    health = "Health"
    trivia = "Trivia"
    academia = "Academia"


class ModelProvider(str, PyEnum):
    """Upstream model vendors reachable through the gateway."""

    openai = "openai"
    anthropic = "anthropic"
    google = "google"
    deepseek = "deepseek"


class SelectionMode(str, PyEnum):
    """Which favourite (if any) drives model selection for a user."""

    auto = "auto"
    category = "category"
    model = "model"


class Theme(str, PyEnum):
    light = "light"
    dark = "dark"
    system = "system"


class MessageRole(str, PyEnum):
    """Roles for messages in a chat."""

    user = "user"
    assistant = "assistant"


class MessageStatus(str, PyEnum):
    """Status of a message turn.

    States:
        pending: Created, stream not started yet
        streaming: A producer is appending to the message's stream
        completed: Final response persisted
        error: Resolution or generation failed (partial output kept on the stream)
    """

    pending = "pending"
    streaming = "streaming"
    completed = "completed"
    error = "error"


class StreamStatus(str, PyEnum):
    """Lifecycle of a persisted stream (chunk log).

    pending -> streaming -> done | error, and pending -> error.
    done and error are terminal and never change afterwards.
    """

    pending = "pending"
    streaming = "streaming"
    done = "done"
    error = "error"


OPEN_STREAM_STATUSES = (StreamStatus.pending.value, StreamStatus.streaming.value)
TERMINAL_STREAM_STATUSES = (StreamStatus.done.value, StreamStatus.error.value)


class AttachmentFormat(str, PyEnum):
    image = "image"
    pdf = "pdf"


# =============================================================================
# Model registry
# =============================================================================


class AIModel(Base):
    """Registry entry for an LLM model reachable through the gateway.

    `key` is the gateway model id (e.g. "openai/gpt-4o") and is what
    clients use for explicit selection.
    """

    __tablename__ = "models"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    key: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    provider: Mapped[str] = mapped_column(Text, nullable=False)
    max_context_tokens: Mapped[int] = mapped_column(Integer, nullable=False)
    supports_pdf: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    supports_image: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    supports_reasoning: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(_in_check("provider", ModelProvider), name="ck_models_provider"),
        CheckConstraint("max_context_tokens > 0", name="ck_models_max_context_positive"),
    )


class BestModel(Base):
    """Maps each category to the model used for it in automatic mode."""

    __tablename__ = "best_models"

    category: Mapped[str] = mapped_column(Text, primary_key=True)
    model_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("models.id", ondelete="SET NULL"), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(_in_check("category", Category), name="ck_best_models_category"),
    )

    model: Mapped["AIModel | None"] = relationship("AIModel")


# =============================================================================
# Users
# =============================================================================


class UserPreference(Base):
    """Per-user settings. Created lazily on first write."""

    __tablename__ = "user_preferences"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    selection_mode: Mapped[str] = mapped_column(
        Text, nullable=False, default=SelectionMode.auto.value
    )
    favorite_category: Mapped[str | None] = mapped_column(Text, nullable=True)
    favorite_model_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("models.id", ondelete="SET NULL"), nullable=True
    )
    theme: Mapped[str | None] = mapped_column(Text, nullable=True)
    general_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    saved_draft_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            _in_check("selection_mode", SelectionMode), name="ck_user_preferences_mode"
        ),
        CheckConstraint(
            f"favorite_category IS NULL OR {_in_check('favorite_category', Category)}",
            name="ck_user_preferences_category",
        ),
        CheckConstraint(
            f"theme IS NULL OR {_in_check('theme', Theme)}",
            name="ck_user_preferences_theme",
        ),
    )

    favorite_model: Mapped["AIModel | None"] = relationship("AIModel")


# =============================================================================
# Chats and messages
# =============================================================================


class Chat(Base):
    """A conversation. `client_id` is generated by the client and used in URLs."""

    __tablename__ = "chats"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    client_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    initial_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    stream_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_branch: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    branch_of_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("chats.id", ondelete="SET NULL"), nullable=True
    )
    last_message_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    collaborators: Mapped[list["ChatCollaborator"]] = relationship(
        "ChatCollaborator", back_populates="chat", cascade="all, delete-orphan"
    )
    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="Message.turn_index",
    )

    @property
    def collaborator_ids(self) -> list[str]:
        return [c.user_id for c in self.collaborators]


class ChatCollaborator(Base):
    """Users with read and stream access to a chat. The owner is always one."""

    __tablename__ = "chat_collaborators"

    chat_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("chats.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    chat: Mapped["Chat"] = relationship("Chat", back_populates="collaborators")


class Message(Base):
    """One conversation turn: the user's prompt plus its response branches.

    Position in the conversation tree is explicit: `turn_index` orders turns
    within a chat, and `selected_branch_index` picks which response branch
    is shown for this turn. `stream_id` is the current generation attempt.
    """

    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    chat_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(Text, nullable=False, default=MessageRole.user.value)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=MessageStatus.pending.value)
    error_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    stream_id: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True)
    model_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("models.id", ondelete="SET NULL"), nullable=True
    )
    turn_index: Mapped[int] = mapped_column(Integer, nullable=False)
    selected_branch_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("turn_index >= 0", name="ck_messages_turn_index"),
        CheckConstraint("selected_branch_index >= 0", name="ck_messages_branch_index"),
        CheckConstraint(_in_check("role", MessageRole), name="ck_messages_role"),
        CheckConstraint(_in_check("status", MessageStatus), name="ck_messages_status"),
        UniqueConstraint("chat_id", "turn_index", name="uix_messages_chat_turn"),
    )

    chat: Mapped["Chat"] = relationship("Chat", back_populates="messages")
    model: Mapped["AIModel | None"] = relationship("AIModel")
    revisions: Mapped[list["MessageRevision"]] = relationship(
        "MessageRevision",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageRevision.revision_index",
    )
    responses: Mapped[list["MessageResponse"]] = relationship(
        "MessageResponse",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageResponse.branch_index",
    )
    attachment_links: Mapped[list["MessageAttachment"]] = relationship(
        "MessageAttachment", back_populates="message", cascade="all, delete-orphan"
    )
    streams: Mapped[list["StreamLog"]] = relationship(
        "StreamLog", back_populates="message", cascade="all, delete-orphan"
    )

    @property
    def selected_response(self) -> "MessageResponse | None":
        for response in self.responses:
            if response.branch_index == self.selected_branch_index:
                return response
        return self.responses[-1] if self.responses else None


class MessageRevision(Base):
    """Edit history of a message's prompt (append-only)."""

    __tablename__ = "message_revisions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    message_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    revision_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("message_id", "revision_index", name="uix_message_revisions_index"),
    )

    message: Mapped["Message"] = relationship("Message", back_populates="revisions")


class MessageResponse(Base):
    """A completed generation for a message.

    One per successful stream; branch copies share the source stream_id.
    """

    __tablename__ = "message_responses"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    message_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    branch_index: Mapped[int] = mapped_column(Integer, nullable=False)
    stream_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    model_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("models.id", ondelete="SET NULL"), nullable=True
    )
    model_name: Mapped[str] = mapped_column(Text, nullable=False)
    provider: Mapped[str] = mapped_column(Text, nullable=False)
    prompt_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completion_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    latency_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("message_id", "branch_index", name="uix_message_responses_branch"),
        CheckConstraint(
            "prompt_tokens IS NULL OR prompt_tokens >= 0",
            name="ck_message_responses_prompt_tokens",
        ),
        CheckConstraint(
            "completion_tokens IS NULL OR completion_tokens >= 0",
            name="ck_message_responses_completion_tokens",
        ),
        CheckConstraint(
            "total_tokens IS NULL OR total_tokens >= 0",
            name="ck_message_responses_total_tokens",
        ),
    )

    message: Mapped["Message"] = relationship("Message", back_populates="responses")


# =============================================================================
# Attachments
# =============================================================================


class Attachment(Base):
    """An uploaded file. Lives independently of the messages that link it."""

    __tablename__ = "attachments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    storage_ref: Mapped[str] = mapped_column(Text, nullable=False)
    format: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(_in_check("format", AttachmentFormat), name="ck_attachments_format"),
    )


class MessageAttachment(Base):
    """Weak link between a message and an attachment."""

    __tablename__ = "message_attachments"

    message_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), primary_key=True
    )
    attachment_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("attachments.id", ondelete="CASCADE"), primary_key=True
    )

    message: Mapped["Message"] = relationship("Message", back_populates="attachment_links")
    attachment: Mapped["Attachment"] = relationship("Attachment")


# =============================================================================
# Streams
# =============================================================================


class StreamLog(Base):
    """Durable stream header: status and fragment count for one generation attempt."""

    __tablename__ = "stream_logs"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    message_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(Text, nullable=False, default=StreamStatus.pending.value)
    chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(_in_check("status", StreamStatus), name="ck_stream_logs_status"),
        CheckConstraint("chunk_count >= 0", name="ck_stream_logs_chunk_count"),
        Index("ix_stream_logs_status_updated", "status", "updated_at"),
    )

    message: Mapped["Message"] = relationship("Message", back_populates="streams")
    chunks: Mapped[list["StreamChunk"]] = relationship(
        "StreamChunk",
        back_populates="stream",
        cascade="all, delete-orphan",
        order_by="StreamChunk.seq",
    )


class StreamChunk(Base):
    """One appended text fragment. (stream_id, seq) orders fragments."""

    __tablename__ = "stream_chunks"

    stream_id: Mapped[str] = mapped_column(
        Text, ForeignKey("stream_logs.id", ondelete="CASCADE"), primary_key=True
    )
    seq: Mapped[int] = mapped_column(Integer, primary_key=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (CheckConstraint("seq >= 0", name="ck_stream_chunks_seq"),)

    stream: Mapped["StreamLog"] = relationship("StreamLog", back_populates="chunks")
