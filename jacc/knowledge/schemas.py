from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from knowledge.models import Provenance, ReviewStatus, UploadMode, VectorizationStatus

# ============================================================================
# Permission Schemas
# ============================================================================


class PermissionFlags(BaseModel):
    """A partial permission update; omitted flags keep their current value."""

    view_all: bool | None = None
    admin_only: bool | None = None
    manager_access: bool | None = None
    agent_access: bool | None = None
    training_data: bool | None = None
    auto_vectorize: bool | None = None


class PermissionSetResponse(BaseModel):
    view_all: bool
    admin_only: bool
    manager_access: bool
    agent_access: bool
    training_data: bool
    auto_vectorize: bool


# ============================================================================
# Ingestion Schemas
# ============================================================================


class StagedFileItem(BaseModel):
    id: UUID
    name: str
    mime_type: str
    size_bytes: int
    relative_path: str | None = None


class RejectedFileItem(BaseModel):
    name: str
    reason: str  # invalid-type, too-large, empty-file, nested-archive, corrupt-archive
    detail: str | None = None


class DuplicateWarningItem(BaseModel):
    name: str
    kind: str  # same-name, same-content
    existing_document_id: UUID | None = None
    staged_file_id: UUID | None = None


class StageResponse(BaseModel):
    ticket_id: UUID
    upload_mode: UploadMode
    expires_at: datetime
    staged: list[StagedFileItem]
    rejected: list[RejectedFileItem]
    duplicates: list[DuplicateWarningItem]


class PlaceRequest(BaseModel):
    ticket_id: UUID
    folder_id: UUID | None = None
    category: str | None = None  # routes to a folder when folder_id is absent
    permissions: PermissionFlags = Field(default_factory=PermissionFlags)
    display_names: dict[str, str] = Field(default_factory=dict)
    confirm_duplicates: bool = False


class PlacedDocumentItem(BaseModel):
    document_id: UUID
    name: str
    display_name: str
    folder_id: UUID | None
    vectorization_status: VectorizationStatus


class IngestResponse(BaseModel):
    placed: list[PlacedDocumentItem]
    rejected: list[RejectedFileItem]
    duplicates: list[DuplicateWarningItem]


class DuplicateCheckRequest(BaseModel):
    names: list[str]


class DuplicateCheckResponse(BaseModel):
    duplicates: list[DuplicateWarningItem]


# ============================================================================
# Document Schemas
# ============================================================================


class DocumentResponse(BaseModel):
    id: UUID
    original_name: str
    display_name: str
    folder_id: UUID | None
    owner_id: str
    mime_type: str
    size_bytes: int
    content_hash: str
    permissions: PermissionSetResponse
    vectorization_status: VectorizationStatus
    vectorization_error: str | None = None
    last_vectorized_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class DocumentListResponse(BaseModel):
    documents: list[DocumentResponse]
    total: int


class DocumentUpdate(BaseModel):
    """Rename and/or move. Send folder_id: null to unassign."""

    display_name: str | None = Field(default=None, min_length=1)
    folder_id: UUID | None = None
    owner_id: str | None = None


class BulkPermissionsUpdate(BaseModel):
    document_ids: list[UUID] = Field(min_length=1)
    permissions: PermissionFlags


class BulkPermissionsResponse(BaseModel):
    documents: list[DocumentResponse]
    not_found: list[UUID]


class RevectorizeResponse(BaseModel):
    document_id: UUID
    vectorization_status: VectorizationStatus
    job_id: UUID | None


# ============================================================================
# Folder Schemas
# ============================================================================


class FolderCreate(BaseModel):
    name: str = Field(min_length=1)
    parent_id: UUID | None = None
    vector_namespace: str | None = None
    folder_type: str | None = None
    priority: int = 0


class FolderUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    parent_id: UUID | None = None
    vector_namespace: str | None = None
    folder_type: str | None = None
    priority: int | None = None


class FolderResponse(BaseModel):
    id: UUID
    name: str
    owner_id: str
    parent_id: UUID | None
    vector_namespace: str | None
    folder_type: str | None
    priority: int
    document_count: int = 0
    created_at: datetime


class FolderListResponse(BaseModel):
    folders: list[FolderResponse]


class FolderDeleteResponse(BaseModel):
    id: UUID
    documents_unassigned: int


# ============================================================================
# Curated Q&A Schemas
# ============================================================================


class FaqEntryCreate(BaseModel):
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)
    category: str = "general"
    tags: list[str] = Field(default_factory=list)
    priority: int = Field(default=0, ge=0, le=10)
    is_active: bool = True


class FaqEntryUpdate(BaseModel):
    answer: str | None = Field(default=None, min_length=1)
    tags: list[str] | None = None
    priority: int | None = Field(default=None, ge=0, le=10)
    is_active: bool | None = None


class FaqEntryResponse(BaseModel):
    id: UUID
    question: str
    answer: str
    category: str
    tags: list[str]
    priority: int
    is_active: bool
    created_by: str
    source_correction_id: UUID | None = None
    created_at: datetime
    updated_at: datetime


class FaqListResponse(BaseModel):
    entries: list[FaqEntryResponse]
    total: int


class FaqImportResponse(BaseModel):
    imported: int
    skipped_lines: list[int]


# ============================================================================
# Query Schemas
# ============================================================================


class QueryRequest(BaseModel):
    query: str = Field(min_length=1)
    chat_id: UUID | None = None  # append the exchange to this chat


class CitationItem(BaseModel):
    type: str  # faq, document, url
    id: str | None = None
    title: str | None = None
    url: str | None = None


class AnswerResponse(BaseModel):
    provenance: Provenance
    answer: str | None
    confidence: float | None = None
    citations: list[CitationItem]
    notice: str | None = None
    from_internal_memory: bool
    interaction_id: UUID | None = None
    message_id: UUID | None = None


class ChatCreate(BaseModel):
    title: str = Field(default="New chat", min_length=1)


class ChatResponse(BaseModel):
    id: UUID
    user_id: str
    title: str
    created_at: datetime


class InteractionItem(BaseModel):
    id: UUID
    user_id: str | None
    role: str
    query: str
    provenance: Provenance
    answer: str | None
    citations: list[CitationItem]
    confidence: float | None
    notice: str | None
    latency_ms: int | None
    admin_reviewed: bool
    created_at: datetime


class InteractionListResponse(BaseModel):
    interactions: list[InteractionItem]


class InteractionStatsResponse(BaseModel):
    total: int
    by_provenance: dict[str, int]
    pending_review: int
    avg_latency_ms: float | None


# ============================================================================
# Review Schemas
# ============================================================================


class ReviewRequest(BaseModel):
    review_status: ReviewStatus
    review_notes: str | None = None


class ReviewResponse(BaseModel):
    id: UUID
    chat_id: UUID
    review_status: ReviewStatus
    review_notes: str | None
    reviewed_by: str
    corrections_made: int
    total_messages: int
    last_reviewed_at: datetime


class CorrectionRequest(BaseModel):
    message_id: UUID
    corrected_content: str = Field(min_length=1)


class CorrectionResponse(BaseModel):
    id: UUID
    chat_id: UUID
    message_id: UUID
    original_content: str
    corrected_content: str
    created_by: str
    promoted_faq_id: UUID | None = None
    created_at: datetime


class PromoteRequest(BaseModel):
    category: str | None = None
    tags: list[str] | None = None
    priority: int | None = Field(default=None, ge=0, le=10)


class ReviewStatsResponse(BaseModel):
    pending: int
    approved: int
    needs_correction: int
    total_corrections: int
    total_chats: int


class ReviewListItem(BaseModel):
    chat_id: UUID
    user_id: str
    title: str
    message_count: int
    review_status: ReviewStatus
    reviewed_by: str | None = None
    last_reviewed_at: datetime | None = None
    updated_at: datetime


class ReviewListResponse(BaseModel):
    reviews: list[ReviewListItem]


class MessageItem(BaseModel):
    id: UUID
    role: str
    content: str
    provenance: Provenance | None = None
    created_at: datetime


class ReviewDetailResponse(BaseModel):
    chat: ChatResponse
    messages: list[MessageItem]
    review: ReviewResponse | None
    corrections: list[CorrectionResponse]
