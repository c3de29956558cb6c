import enum
from datetime import datetime
from uuid import UUID

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

EMBEDDING_DIMENSIONS = 1536

# JSONB and pgvector on PostgreSQL; plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")
EmbeddingType = Vector(EMBEDDING_DIMENSIONS).with_variant(JSON(), "sqlite")


class Base(DeclarativeBase):
    pass


# ============================================================================
# Enums
# ============================================================================


class Role(str, enum.Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    AGENT = "agent"


class VectorizationStatus(str, enum.Enum):
    PENDING = "pending"
    VECTORIZED = "vectorized"
    SKIPPED = "skipped"
    FAILED = "failed"


class UploadMode(str, enum.Enum):
    FILES = "files"
    FOLDER = "folder"
    ZIP_EXTRACT = "zip_extract"


class TicketStatus(str, enum.Enum):
    STAGED = "staged"
    PLACED = "placed"
    EXPIRED = "expired"


class JobType(str, enum.Enum):
    VECTORIZE_DOCUMENT = "VECTORIZE_DOCUMENT"


class JobStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class ReviewStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    NEEDS_CORRECTION = "needs_correction"


class Provenance(str, enum.Enum):
    FAQ = "faq"
    DOCUMENTS = "documents"
    WEB = "web"
    NONE = "none"


# ============================================================================
# Folders & Documents
# ============================================================================


class Folder(Base):
    __tablename__ = "folder"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    parent_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("folder.id", ondelete="SET NULL"), nullable=True
    )
    # Routing metadata, e.g. "processors/tsys" + "processor"
    vector_namespace: Mapped[str | None] = mapped_column(Text, nullable=True)
    folder_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (Index("ix_folder_type_priority", "folder_type", "priority"),)


class Document(Base):
    __tablename__ = "document"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    original_name: Mapped[str] = mapped_column(Text, nullable=False)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    folder_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("folder.id", ondelete="SET NULL"), nullable=True
    )
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    content_hash: Mapped[str] = mapped_column(Text, nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)

    # Permission set, always written through services.permissions.normalize
    view_all: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    admin_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    manager_access: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    agent_access: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    training_data: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_vectorize: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    vectorization_status: Mapped[VectorizationStatus] = mapped_column(
        Enum(VectorizationStatus), nullable=False, default=VectorizationStatus.PENDING
    )
    vectorization_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_vectorized_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("ix_document_folder", "folder_id"),
        Index("ix_document_original_name", "original_name"),
        Index("ix_document_content_hash", "content_hash"),
    )


class Chunk(Base):
    __tablename__ = "chunk"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    document_id: Mapped[UUID] = mapped_column(
        ForeignKey("document.id", ondelete="CASCADE"), nullable=False
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    char_start: Mapped[int] = mapped_column(Integer, nullable=False)
    char_end: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_chunk_index"),
        Index("ix_chunk_document", "document_id"),
    )


class ChunkEmbedding(Base):
    __tablename__ = "chunk_embedding"

    chunk_id: Mapped[UUID] = mapped_column(
        ForeignKey("chunk.id", ondelete="CASCADE"), primary_key=True
    )
    embedding = mapped_column(EmbeddingType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )


# ============================================================================
# Two-phase upload: staging tickets
# ============================================================================


class StagingTicket(Base):
    """A batch of uploaded files waiting for placement confirmation."""

    __tablename__ = "staging_ticket"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    created_by: Mapped[str] = mapped_column(Text, nullable=False)
    upload_mode: Mapped[UploadMode] = mapped_column(Enum(UploadMode), nullable=False)
    status: Mapped[TicketStatus] = mapped_column(
        Enum(TicketStatus), nullable=False, default=TicketStatus.STAGED
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )

    __table_args__ = (Index("ix_staging_ticket_expiry", "status", "expires_at"),)


class StagedFile(Base):
    __tablename__ = "staged_file"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    ticket_id: Mapped[UUID] = mapped_column(
        ForeignKey("staging_ticket.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)  # order within the upload
    original_name: Mapped[str] = mapped_column(Text, nullable=False)
    relative_path: Mapped[str | None] = mapped_column(Text, nullable=True)  # folder uploads
    mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    content_hash: Mapped[str] = mapped_column(Text, nullable=False)
    staged_path: Mapped[str] = mapped_column(Text, nullable=False)
    duplicate_of: Mapped[UUID | None] = mapped_column(
        ForeignKey("document.id", ondelete="SET NULL"), nullable=True
    )
    duplicate_kind: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )

    __table_args__ = (Index("ix_staged_file_ticket", "ticket_id"),)


# ============================================================================
# Jobs
# ============================================================================


class Job(Base):
    __tablename__ = "job"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    job_type: Mapped[JobType] = mapped_column(Enum(JobType), nullable=False)
    document_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("document.id", ondelete="CASCADE"), nullable=True
    )
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus), nullable=False, default=JobStatus.PENDING
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (Index("ix_job_pending", "status", "created_at"),)


# ============================================================================
# Curated Q&A
# ============================================================================


class FaqEntry(Base):
    """Admin-curated question/answer pair: the highest-trust retrieval tier."""

    __tablename__ = "faq_entry"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    question_key: Mapped[str] = mapped_column(Text, nullable=False)
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    tags = mapped_column(JSONType, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(
        Integer,
        CheckConstraint("priority >= 0 AND priority <= 10"),
        nullable=False,
        default=0,
    )
    created_by: Mapped[str] = mapped_column(Text, nullable=False)
    # Set when the entry was promoted from a reviewer correction
    source_correction_id: Mapped[UUID | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("category", "question_key", name="uq_faq_category_question"),
        Index("ix_faq_active", "is_active"),
    )


# ============================================================================
# Chats, Reviews & Corrections
# ============================================================================


class Chat(Base):
    __tablename__ = "chat"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class Message(Base):
    __tablename__ = "message"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    chat_id: Mapped[UUID] = mapped_column(ForeignKey("chat.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(Text, nullable=False)  # user, assistant
    content: Mapped[str] = mapped_column(Text, nullable=False)
    provenance: Mapped[Provenance | None] = mapped_column(Enum(Provenance), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )

    __table_args__ = (Index("ix_message_chat_created", "chat_id", "created_at"),)


class ChatReview(Base):
    __tablename__ = "chat_review"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    chat_id: Mapped[UUID] = mapped_column(ForeignKey("chat.id", ondelete="CASCADE"), nullable=False)
    review_status: Mapped[ReviewStatus] = mapped_column(
        Enum(ReviewStatus), nullable=False, default=ReviewStatus.PENDING
    )
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str] = mapped_column(Text, nullable=False)
    # Snapshots taken at review time, not live counts
    corrections_made: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_messages: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reviewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (UniqueConstraint("chat_id", name="uq_chat_review_chat"),)


class MessageCorrection(Base):
    __tablename__ = "message_correction"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    chat_id: Mapped[UUID] = mapped_column(ForeignKey("chat.id", ondelete="CASCADE"), nullable=False)
    message_id: Mapped[UUID] = mapped_column(
        ForeignKey("message.id", ondelete="CASCADE"), nullable=False
    )
    original_content: Mapped[str] = mapped_column(Text, nullable=False)
    corrected_content: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[str] = mapped_column(Text, nullable=False)
    promoted_faq_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("faq_entry.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )

    __table_args__ = (Index("ix_message_correction_chat", "chat_id"),)


# ============================================================================
# Retrieval audit
# ============================================================================


class Interaction(Base):
    """One answer produced by the retrieval cascade."""

    __tablename__ = "interaction"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    user_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[Role] = mapped_column(Enum(Role), nullable=False)
    chat_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("chat.id", ondelete="SET NULL"), nullable=True
    )
    query: Mapped[str] = mapped_column(Text, nullable=False)
    provenance: Mapped[Provenance] = mapped_column(Enum(Provenance), nullable=False)
    answer: Mapped[str | None] = mapped_column(Text, nullable=True)
    citations = mapped_column(JSONType, nullable=False, default=list)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    notice: Mapped[str | None] = mapped_column(Text, nullable=True)  # e.g. web-unavailable
    latency_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Web answers are queued for admin review as candidate corpus additions
    admin_reviewed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )

    __table_args__ = (
        Index("ix_interaction_created", "created_at"),
        Index("ix_interaction_provenance", "provenance", "admin_reviewed"),
    )


# ============================================================================
# Sessions
# ============================================================================


class UserSession(Base):
    __tablename__ = "user_session"

    session_id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[Role] = mapped_column(Enum(Role), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=datetime.utcnow
    )

    __table_args__ = (Index("ix_user_session_expiry", "expires_at"),)
