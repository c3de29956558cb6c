"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )


def _enum(name: str, *labels: str) -> sa.Enum:
    return sa.Enum(*labels, name=name, create_type=False)


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # Enum labels are the Python member names, which is what SQLAlchemy stores
    op.execute("""
        CREATE TYPE role AS ENUM ('ADMIN', 'MANAGER', 'AGENT');
        CREATE TYPE vectorizationstatus AS ENUM ('PENDING', 'VECTORIZED', 'SKIPPED', 'FAILED');
        CREATE TYPE uploadmode AS ENUM ('FILES', 'FOLDER', 'ZIP_EXTRACT');
        CREATE TYPE ticketstatus AS ENUM ('STAGED', 'PLACED', 'EXPIRED');
        CREATE TYPE jobtype AS ENUM ('VECTORIZE_DOCUMENT');
        CREATE TYPE jobstatus AS ENUM ('PENDING', 'IN_PROGRESS', 'SUCCEEDED', 'FAILED');
        CREATE TYPE reviewstatus AS ENUM ('PENDING', 'APPROVED', 'NEEDS_CORRECTION');
        CREATE TYPE provenance AS ENUM ('FAQ', 'DOCUMENTS', 'WEB', 'NONE');
    """)

    # folder
    op.create_table(
        "folder",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("owner_id", sa.Text(), nullable=False),
        sa.Column("parent_id", sa.UUID(), nullable=True),
        sa.Column("vector_namespace", sa.Text(), nullable=True),
        sa.Column("folder_type", sa.Text(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["parent_id"], ["folder.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_folder_type_priority", "folder", ["folder_type", "priority"])

    # document
    op.create_table(
        "document",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("original_name", sa.Text(), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=False),
        sa.Column("folder_id", sa.UUID(), nullable=True),
        sa.Column("owner_id", sa.Text(), nullable=False),
        sa.Column("content_hash", sa.Text(), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("mime_type", sa.Text(), nullable=False),
        sa.Column("storage_path", sa.Text(), nullable=False),
        sa.Column("view_all", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("admin_only", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("manager_access", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("agent_access", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("training_data", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("auto_vectorize", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "vectorization_status",
            _enum("vectorizationstatus", "PENDING", "VECTORIZED", "SKIPPED", "FAILED"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("vectorization_error", sa.Text(), nullable=True),
        sa.Column("last_vectorized_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["folder_id"], ["folder.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_document_folder", "document", ["folder_id"])
    op.create_index("ix_document_original_name", "document", ["original_name"])
    op.create_index("ix_document_content_hash", "document", ["content_hash"])

    # chunk
    op.create_table(
        "chunk",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("document_id", sa.UUID(), nullable=False),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("char_start", sa.Integer(), nullable=False),
        sa.Column("char_end", sa.Integer(), nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["document_id"], ["document.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_id", "chunk_index", name="uq_chunk_index"),
    )
    op.create_index("ix_chunk_document", "chunk", ["document_id"])

    # chunk_embedding
    op.create_table(
        "chunk_embedding",
        sa.Column("chunk_id", sa.UUID(), nullable=False),
        sa.Column("embedding", Vector(1536), nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["chunk_id"], ["chunk.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("chunk_id"),
    )
    op.execute(
        "CREATE INDEX ix_chunk_embedding_hnsw ON chunk_embedding "
        "USING hnsw (embedding vector_cosine_ops)"
    )

    # staging_ticket
    op.create_table(
        "staging_ticket",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_by", sa.Text(), nullable=False),
        sa.Column(
            "upload_mode", _enum("uploadmode", "FILES", "FOLDER", "ZIP_EXTRACT"), nullable=False
        ),
        sa.Column(
            "status",
            _enum("ticketstatus", "STAGED", "PLACED", "EXPIRED"),
            nullable=False,
            server_default="STAGED",
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_staging_ticket_expiry", "staging_ticket", ["status", "expires_at"])

    # staged_file
    op.create_table(
        "staged_file",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("ticket_id", sa.UUID(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("original_name", sa.Text(), nullable=False),
        sa.Column("relative_path", sa.Text(), nullable=True),
        sa.Column("mime_type", sa.Text(), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("content_hash", sa.Text(), nullable=False),
        sa.Column("staged_path", sa.Text(), nullable=False),
        sa.Column("duplicate_of", sa.UUID(), nullable=True),
        sa.Column("duplicate_kind", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["ticket_id"], ["staging_ticket.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["duplicate_of"], ["document.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_staged_file_ticket", "staged_file", ["ticket_id"])

    # job
    op.create_table(
        "job",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("job_type", _enum("jobtype", "VECTORIZE_DOCUMENT"), nullable=False),
        sa.Column("document_id", sa.UUID(), nullable=True),
        sa.Column(
            "status",
            _enum("jobstatus", "PENDING", "IN_PROGRESS", "SUCCEEDED", "FAILED"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["document_id"], ["document.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_job_pending", "job", ["status", "created_at"])

    # faq_entry
    op.create_table(
        "faq_entry",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column("question_key", sa.Text(), nullable=False),
        sa.Column("answer", sa.Text(), nullable=False),
        sa.Column("category", sa.Text(), nullable=False),
        sa.Column("tags", JSONB(), nullable=False, server_default="[]"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_by", sa.Text(), nullable=False),
        sa.Column("source_correction_id", sa.UUID(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("priority >= 0 AND priority <= 10"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("category", "question_key", name="uq_faq_category_question"),
    )
    op.create_index("ix_faq_active", "faq_entry", ["is_active"])

    # chat
    op.create_table(
        "chat",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )

    # message
    op.create_table(
        "message",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("chat_id", sa.UUID(), nullable=False),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column(
            "provenance", _enum("provenance", "FAQ", "DOCUMENTS", "WEB", "NONE"), nullable=True
        ),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["chat_id"], ["chat.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_message_chat_created", "message", ["chat_id", "created_at"])

    # chat_review
    op.create_table(
        "chat_review",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("chat_id", sa.UUID(), nullable=False),
        sa.Column(
            "review_status",
            _enum("reviewstatus", "PENDING", "APPROVED", "NEEDS_CORRECTION"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.Text(), nullable=False),
        sa.Column("corrections_made", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_messages", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reviewed_at", sa.DateTime(timezone=True), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["chat_id"], ["chat.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("chat_id", name="uq_chat_review_chat"),
    )

    # message_correction
    op.create_table(
        "message_correction",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("chat_id", sa.UUID(), nullable=False),
        sa.Column("message_id", sa.UUID(), nullable=False),
        sa.Column("original_content", sa.Text(), nullable=False),
        sa.Column("corrected_content", sa.Text(), nullable=False),
        sa.Column("created_by", sa.Text(), nullable=False),
        sa.Column("promoted_faq_id", sa.UUID(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["chat_id"], ["chat.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["message_id"], ["message.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["promoted_faq_id"], ["faq_entry.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_message_correction_chat", "message_correction", ["chat_id"])

    # interaction
    op.create_table(
        "interaction",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=True),
        sa.Column("role", _enum("role", "ADMIN", "MANAGER", "AGENT"), nullable=False),
        sa.Column("chat_id", sa.UUID(), nullable=True),
        sa.Column("query", sa.Text(), nullable=False),
        sa.Column(
            "provenance", _enum("provenance", "FAQ", "DOCUMENTS", "WEB", "NONE"), nullable=False
        ),
        sa.Column("answer", sa.Text(), nullable=True),
        sa.Column("citations", JSONB(), nullable=False, server_default="[]"),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("notice", sa.Text(), nullable=True),
        sa.Column("latency_ms", sa.Integer(), nullable=True),
        sa.Column("admin_reviewed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["chat_id"], ["chat.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_interaction_created", "interaction", ["created_at"])
    op.create_index("ix_interaction_provenance", "interaction", ["provenance", "admin_reviewed"])

    # user_session
    op.create_table(
        "user_session",
        sa.Column("session_id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("role", _enum("role", "ADMIN", "MANAGER", "AGENT"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("session_id"),
    )
    op.create_index("ix_user_session_expiry", "user_session", ["expires_at"])


def downgrade() -> None:
    op.drop_table("user_session")
    op.drop_table("interaction")
    op.drop_table("message_correction")
    op.drop_table("chat_review")
    op.drop_table("message")
    op.drop_table("chat")
    op.drop_table("faq_entry")
    op.drop_table("job")
    op.drop_table("staged_file")
    op.drop_table("staging_ticket")
    op.drop_table("chunk_embedding")
    op.drop_table("chunk")
    op.drop_table("document")
    op.drop_table("folder")

    op.execute("DROP TYPE provenance")
    op.execute("DROP TYPE reviewstatus")
    op.execute("DROP TYPE jobstatus")
    op.execute("DROP TYPE jobtype")
    op.execute("DROP TYPE ticketstatus")
    op.execute("DROP TYPE uploadmode")
    op.execute("DROP TYPE vectorizationstatus")
    op.execute("DROP TYPE role")
    op.execute("DROP EXTENSION IF EXISTS vector")
