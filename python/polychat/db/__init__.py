"""Database module for Polychat.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from polychat.db.engine import create_db_engine, get_engine
from polychat.db.models import (
    OPEN_STREAM_STATUSES,
    TERMINAL_STREAM_STATUSES,
    AIModel,
    Attachment,
    AttachmentFormat,
    Base,
    BestModel,
    Category,
    Chat,
    ChatCollaborator,
    Message,
    MessageAttachment,
    MessageResponse,
    MessageRevision,
    MessageRole,
    MessageStatus,
    ModelProvider,
    SelectionMode,
    StreamChunk,
    StreamLog,
    StreamStatus,
    Theme,
    UserPreference,
)
from polychat.db.session import get_session_factory, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "get_session_factory",
    "transaction",
    # Base
    "Base",
    # Enums
    "Category",
    "ModelProvider",
    "SelectionMode",
    "Theme",
    "MessageRole",
    "MessageStatus",
    "StreamStatus",
    "AttachmentFormat",
    "OPEN_STREAM_STATUSES",
    "TERMINAL_STREAM_STATUSES",
    # Models
    "AIModel",
    "BestModel",
    "UserPreference",
    "Chat",
    "ChatCollaborator",
    "Message",
    "MessageRevision",
    "MessageResponse",
    "Attachment",
    "MessageAttachment",
    "StreamLog",
    "StreamChunk",
]
