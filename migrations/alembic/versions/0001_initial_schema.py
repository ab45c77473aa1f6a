"""Initial schema - model registry, preferences, chats, messages, streams

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates the model registry (models, best_models), user preferences, chats
with collaborators, messages with revisions/responses/attachments, and the
durable stream log (stream_logs + stream_chunks).

Identifiers and timestamps are generated by the application; enumerated
columns are text guarded by CHECK constraints.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

CATEGORIES = (
    "Programming",
    "Roleplay",
    "Marketing",
    "SEO",
    "Technology",
    "Science",
    "Translation",
    "Legal",
    "Finance",
    "Health",
    "Trivia",
    "Academia",
)


def _in(column: str, values: Sequence[str]) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.TIMESTAMP(timezone=True), nullable=nullable)


def upgrade() -> None:
    # ==========================================================================
    # models table (registry)
    # ==========================================================================
    op.create_table(
        "models",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("key", sa.Text(), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=False),
        sa.Column("provider", sa.Text(), nullable=False),
        sa.Column("max_context_tokens", sa.Integer(), nullable=False),
        sa.Column("supports_pdf", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("supports_image", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("supports_reasoning", sa.Boolean(), server_default="false", nullable=False),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key"),
        sa.CheckConstraint(
            _in("provider", ("openai", "anthropic", "google", "deepseek")),
            name="ck_models_provider",
        ),
        sa.CheckConstraint("max_context_tokens > 0", name="ck_models_max_context_positive"),
    )

    op.create_table(
        "best_models",
        sa.Column("category", sa.Text(), nullable=False),
        sa.Column("model_id", sa.UUID(), nullable=True),
        _ts("updated_at"),
        sa.PrimaryKeyConstraint("category"),
        sa.ForeignKeyConstraint(["model_id"], ["models.id"], ondelete="SET NULL"),
        sa.CheckConstraint(_in("category", CATEGORIES), name="ck_best_models_category"),
    )

    # ==========================================================================
    # user_preferences table
    # ==========================================================================
    op.create_table(
        "user_preferences",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("selection_mode", sa.Text(), server_default="auto", nullable=False),
        sa.Column("favorite_category", sa.Text(), nullable=True),
        sa.Column("favorite_model_id", sa.UUID(), nullable=True),
        sa.Column("theme", sa.Text(), nullable=True),
        sa.Column("general_prompt", sa.Text(), nullable=True),
        sa.Column("saved_draft_prompt", sa.Text(), nullable=True),
        _ts("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
        sa.ForeignKeyConstraint(["favorite_model_id"], ["models.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            _in("selection_mode", ("auto", "category", "model")),
            name="ck_user_preferences_mode",
        ),
        sa.CheckConstraint(
            f"favorite_category IS NULL OR {_in('favorite_category', CATEGORIES)}",
            name="ck_user_preferences_category",
        ),
        sa.CheckConstraint(
            f"theme IS NULL OR {_in('theme', ('light', 'dark', 'system'))}",
            name="ck_user_preferences_theme",
        ),
    )

    # ==========================================================================
    # chats / chat_collaborators
    # ==========================================================================
    op.create_table(
        "chats",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("client_id", sa.Text(), nullable=False),
        sa.Column("owner_id", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("pinned", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("initial_prompt", sa.Text(), nullable=True),
        sa.Column("stream_id", sa.Text(), nullable=True),
        sa.Column("is_branch", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("branch_of_id", sa.UUID(), nullable=True),
        _ts("last_message_at"),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("client_id"),
        sa.ForeignKeyConstraint(["branch_of_id"], ["chats.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "chat_collaborators",
        sa.Column("chat_id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("chat_id", "user_id"),
        sa.ForeignKeyConstraint(["chat_id"], ["chats.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_chat_collaborators_user", "chat_collaborators", ["user_id"])

    # ==========================================================================
    # messages and their children
    # ==========================================================================
    op.create_table(
        "messages",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("chat_id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("role", sa.Text(), server_default="user", nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), server_default="pending", nullable=False),
        sa.Column("error_code", sa.Text(), nullable=True),
        sa.Column("stream_id", sa.Text(), nullable=True),
        sa.Column("model_id", sa.UUID(), nullable=True),
        sa.Column("turn_index", sa.Integer(), nullable=False),
        sa.Column("selected_branch_index", sa.Integer(), server_default="0", nullable=False),
        _ts("created_at"),
        _ts("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stream_id"),
        sa.UniqueConstraint("chat_id", "turn_index", name="uix_messages_chat_turn"),
        sa.ForeignKeyConstraint(["chat_id"], ["chats.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["model_id"], ["models.id"], ondelete="SET NULL"),
        sa.CheckConstraint("turn_index >= 0", name="ck_messages_turn_index"),
        sa.CheckConstraint("selected_branch_index >= 0", name="ck_messages_branch_index"),
        sa.CheckConstraint(_in("role", ("user", "assistant")), name="ck_messages_role"),
        sa.CheckConstraint(
            _in("status", ("pending", "streaming", "completed", "error")),
            name="ck_messages_status",
        ),
    )

    op.create_table(
        "message_revisions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("message_id", sa.UUID(), nullable=False),
        sa.Column("revision_index", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("message_id", "revision_index", name="uix_message_revisions_index"),
        sa.ForeignKeyConstraint(["message_id"], ["messages.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "message_responses",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("message_id", sa.UUID(), nullable=False),
        sa.Column("branch_index", sa.Integer(), nullable=False),
        sa.Column("stream_id", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("model_id", sa.UUID(), nullable=True),
        sa.Column("model_name", sa.Text(), nullable=False),
        sa.Column("provider", sa.Text(), nullable=False),
        sa.Column("prompt_tokens", sa.Integer(), nullable=True),
        sa.Column("completion_tokens", sa.Integer(), nullable=True),
        sa.Column("total_tokens", sa.Integer(), nullable=True),
        sa.Column("latency_ms", sa.Integer(), nullable=True),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("message_id", "branch_index", name="uix_message_responses_branch"),
        sa.ForeignKeyConstraint(["message_id"], ["messages.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["model_id"], ["models.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "prompt_tokens IS NULL OR prompt_tokens >= 0",
            name="ck_message_responses_prompt_tokens",
        ),
        sa.CheckConstraint(
            "completion_tokens IS NULL OR completion_tokens >= 0",
            name="ck_message_responses_completion_tokens",
        ),
        sa.CheckConstraint(
            "total_tokens IS NULL OR total_tokens >= 0",
            name="ck_message_responses_total_tokens",
        ),
    )
    op.create_index("ix_message_responses_stream_id", "message_responses", ["stream_id"])

    # ==========================================================================
    # attachments
    # ==========================================================================
    op.create_table(
        "attachments",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("owner_id", sa.Text(), nullable=False),
        sa.Column("storage_ref", sa.Text(), nullable=False),
        sa.Column("format", sa.Text(), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(_in("format", ("image", "pdf")), name="ck_attachments_format"),
    )
    op.create_index("idx_attachments_owner", "attachments", ["owner_id", "created_at"])

    op.create_table(
        "message_attachments",
        sa.Column("message_id", sa.UUID(), nullable=False),
        sa.Column("attachment_id", sa.UUID(), nullable=False),
        sa.PrimaryKeyConstraint("message_id", "attachment_id"),
        sa.ForeignKeyConstraint(["message_id"], ["messages.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["attachment_id"], ["attachments.id"], ondelete="CASCADE"),
    )

    # ==========================================================================
    # stream log
    # ==========================================================================
    op.create_table(
        "stream_logs",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("message_id", sa.UUID(), nullable=False),
        sa.Column("status", sa.Text(), server_default="pending", nullable=False),
        sa.Column("chunk_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("error_code", sa.Text(), nullable=True),
        _ts("claimed_at", nullable=True),
        _ts("finished_at", nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["message_id"], ["messages.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            _in("status", ("pending", "streaming", "done", "error")),
            name="ck_stream_logs_status",
        ),
        sa.CheckConstraint("chunk_count >= 0", name="ck_stream_logs_chunk_count"),
    )
    # Sweeper scans open streams by age
    op.create_index("ix_stream_logs_status_updated", "stream_logs", ["status", "updated_at"])

    op.create_table(
        "stream_chunks",
        sa.Column("stream_id", sa.Text(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("stream_id", "seq"),
        sa.ForeignKeyConstraint(["stream_id"], ["stream_logs.id"], ondelete="CASCADE"),
        sa.CheckConstraint("seq >= 0", name="ck_stream_chunks_seq"),
    )


def downgrade() -> None:
    op.drop_table("stream_chunks")
    op.drop_index("ix_stream_logs_status_updated", table_name="stream_logs")
    op.drop_table("stream_logs")
    op.drop_table("message_attachments")
    op.drop_index("idx_attachments_owner", table_name="attachments")
    op.drop_table("attachments")
    op.drop_index("ix_message_responses_stream_id", table_name="message_responses")
    op.drop_table("message_responses")
    op.drop_table("message_revisions")
    op.drop_table("messages")
    op.drop_index("idx_chat_collaborators_user", table_name="chat_collaborators")
    op.drop_table("chat_collaborators")
    op.drop_table("chats")
    op.drop_table("user_preferences")
    op.drop_table("best_models")
    op.drop_table("models")
