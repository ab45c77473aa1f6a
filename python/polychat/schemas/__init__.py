"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from polychat.schemas.attachment import AttachmentOut, CreateAttachmentRequest
from polychat.schemas.chat import (
    BranchChatRequest,
    ChatOut,
    ChatStreamRequest,
    CreateChatOut,
    CreateChatRequest,
    EditAndRetryRequest,
    MessageOut,
    ResponseOut,
    RetryMessageRequest,
    RevisionOut,
    SelectResponseRequest,
    SendMessageOut,
    SendMessageRequest,
    StreamBodyOut,
)
from polychat.schemas.models import BestModelOut, ModelOut
from polychat.schemas.preferences import PreferenceOut, UpdatePreferenceRequest
from polychat.schemas.prompts import EnhancedPromptOut, PromptRequest, TitleOut
from polychat.schemas.selection import (
    AutoSelection,
    CategorySelection,
    KeySelection,
    ModelSelection,
    model_selection_adapter,
)

__all__ = [
    # Attachments
    "AttachmentOut",
    "CreateAttachmentRequest",
    # Chats and messages
    "BranchChatRequest",
    "ChatOut",
    "ChatStreamRequest",
    "CreateChatOut",
    "CreateChatRequest",
    "EditAndRetryRequest",
    "MessageOut",
    "ResponseOut",
    "RetryMessageRequest",
    "RevisionOut",
    "SelectResponseRequest",
    "SendMessageOut",
    "SendMessageRequest",
    "StreamBodyOut",
    # Registry
    "BestModelOut",
    "ModelOut",
    # Preferences
    "PreferenceOut",
    "UpdatePreferenceRequest",
    # Prompt assistance
    "EnhancedPromptOut",
    "PromptRequest",
    "TitleOut",
    # Selection
    "AutoSelection",
    "CategorySelection",
    "KeySelection",
    "ModelSelection",
    "model_selection_adapter",
]
