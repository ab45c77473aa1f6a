"""Attachment routes.

Attachments are registered after the client uploaded the bytes to external
storage. Listing and deletion are filtered to the owner.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from polychat.api.deps import get_db
from polychat.auth.middleware import Viewer, get_viewer
from polychat.responses import success_response
from polychat.schemas.attachment import CreateAttachmentRequest
from polychat.services import attachments as attachments_service

router = APIRouter(tags=["attachments"])


@router.get("/attachments")
def list_attachments(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """List the viewer's attachments, newest first."""
    attachments = attachments_service.list_attachments(db, viewer.user_id)
    return success_response([a.model_dump(mode="json") for a in attachments])


@router.post("/attachments", status_code=201)
def create_attachment(
    body: CreateAttachmentRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    result = attachments_service.create_attachment(db, viewer.user_id, body)
    return success_response(result.model_dump(mode="json"))


@router.delete("/attachments/{attachment_id}", status_code=204)
def delete_attachment(
    attachment_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    """Delete an attachment. Messages that linked it keep their content.

    Errors:
        E_ATTACHMENT_NOT_FOUND (404): missing or not owned by the viewer.
    """
    attachments_service.delete_attachment(db, viewer.user_id, attachment_id)
    return Response(status_code=204)
