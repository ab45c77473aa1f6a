"""Authorization predicates for chat access.

All functions:
- Accept an explicit SQLAlchemy Session
- Return booleans only (no HTTP exceptions)
- Must not leak existence: "not found" and "not visible" both return False

Chat visibility: the viewer is listed in chat_collaborators. The owner is
always a collaborator.
"""

from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from polychat.db.models import Chat, ChatCollaborator, Message


def is_chat_collaborator(session: Session, viewer_id: str, chat_id: UUID) -> bool:
    """True iff viewer is a collaborator on the chat."""
    return session.execute(
        select(
            exists().where(
                ChatCollaborator.chat_id == chat_id,
                ChatCollaborator.user_id == viewer_id,
            )
        )
    ).scalar_one()


def is_chat_owner(session: Session, viewer_id: str, chat_id: UUID) -> bool:
    """True iff viewer owns the chat."""
    return session.execute(
        select(exists().where(Chat.id == chat_id, Chat.owner_id == viewer_id))
    ).scalar_one()


def can_read_message(session: Session, viewer_id: str, message_id: UUID) -> bool:
    """True iff the message exists and viewer collaborates on its chat."""
    return session.execute(
        select(
            exists().where(
                Message.id == message_id,
                ChatCollaborator.chat_id == Message.chat_id,
                ChatCollaborator.user_id == viewer_id,
            )
        )
    ).scalar_one()
