"""Attachment Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from polychat.db.models import AttachmentFormat


class AttachmentOut(BaseModel):
    id: UUID
    owner_id: str
    storage_ref: str
    format: AttachmentFormat
    url: str
    name: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CreateAttachmentRequest(BaseModel):
    """Register an already-uploaded file. The bytes live in external storage."""

    storage_ref: str = Field(min_length=1)
    format: AttachmentFormat
    url: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=512)

    model_config = ConfigDict(extra="forbid")
