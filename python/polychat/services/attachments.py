"""Attachment service layer.

Attachments are owned by the uploading user and listed/deleted by their
owner only. Messages reference them weakly (link rows); deleting an
attachment removes its links but never the messages.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from polychat.db.models import Attachment
from polychat.db.session import transaction
from polychat.errors import ApiErrorCode, NotFoundError
from polychat.logging import get_logger
from polychat.schemas.attachment import AttachmentOut, CreateAttachmentRequest

logger = get_logger(__name__)


def create_attachment(
    db: Session, viewer_id: str, request: CreateAttachmentRequest
) -> AttachmentOut:
    with transaction(db):
        attachment = Attachment(
            owner_id=viewer_id,
            storage_ref=request.storage_ref,
            format=request.format.value,
            url=request.url,
            name=request.name,
        )
        db.add(attachment)
        db.flush()
    logger.info("attachment_created", attachment_id=str(attachment.id), format=attachment.format)
    return AttachmentOut.model_validate(attachment)


def list_attachments(db: Session, viewer_id: str) -> list[AttachmentOut]:
    attachments = db.scalars(
        select(Attachment)
        .where(Attachment.owner_id == viewer_id)
        .order_by(Attachment.created_at.desc(), Attachment.id)
    ).all()
    return [AttachmentOut.model_validate(a) for a in attachments]


def delete_attachment(db: Session, viewer_id: str, attachment_id: UUID) -> None:
    """Raises NotFoundError(E_ATTACHMENT_NOT_FOUND) when missing or not owned."""
    with transaction(db):
        attachment = db.get(Attachment, attachment_id)
        if attachment is None or attachment.owner_id != viewer_id:
            raise NotFoundError(ApiErrorCode.E_ATTACHMENT_NOT_FOUND, "Attachment not found")
        db.delete(attachment)
    logger.info("attachment_deleted", attachment_id=str(attachment_id))
