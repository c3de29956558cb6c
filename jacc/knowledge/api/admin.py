import logging
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy import func, select

from knowledge.auth import RequestContext, get_request_context, require_admin
from knowledge.models import FaqEntry, Folder, Interaction, Provenance
from knowledge.schemas import (
    CitationItem,
    FaqEntryCreate,
    FaqEntryResponse,
    FaqEntryUpdate,
    FaqImportResponse,
    FaqListResponse,
    FolderCreate,
    FolderDeleteResponse,
    FolderListResponse,
    FolderResponse,
    FolderUpdate,
    InteractionItem,
    InteractionListResponse,
    InteractionStatsResponse,
)
from knowledge.services.corpus import CuratedInput, upsert_curated
from knowledge.services.faq_import import import_faq_rows
from knowledge.services.folders import (
    create_folder,
    delete_folder,
    is_descendant,
    list_folders_with_counts,
    provision_folders,
)
from knowledge.services.observability import (
    get_interaction_stats,
    list_interactions,
    mark_interaction_reviewed,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def to_folder_response(folder: Folder, document_count: int = 0) -> FolderResponse:
    return FolderResponse(
        id=folder.id,
        name=folder.name,
        owner_id=folder.owner_id,
        parent_id=folder.parent_id,
        vector_namespace=folder.vector_namespace,
        folder_type=folder.folder_type,
        priority=folder.priority,
        document_count=document_count,
        created_at=folder.created_at,
    )


def to_faq_response(entry: FaqEntry) -> FaqEntryResponse:
    return FaqEntryResponse(
        id=entry.id,
        question=entry.question,
        answer=entry.answer,
        category=entry.category,
        tags=list(entry.tags or []),
        priority=entry.priority,
        is_active=entry.is_active,
        created_by=entry.created_by,
        source_correction_id=entry.source_correction_id,
        created_at=entry.created_at,
        updated_at=entry.updated_at,
    )


def to_interaction_item(interaction: Interaction) -> InteractionItem:
    return InteractionItem(
        id=interaction.id,
        user_id=interaction.user_id,
        role=interaction.role.value,
        query=interaction.query,
        provenance=interaction.provenance,
        answer=interaction.answer,
        citations=[CitationItem(**c) for c in interaction.citations or []],
        confidence=interaction.confidence,
        notice=interaction.notice,
        latency_ms=interaction.latency_ms,
        admin_reviewed=interaction.admin_reviewed,
        created_at=interaction.created_at,
    )


# ============================================================================
# Folders
# ============================================================================


@router.get("/folders", response_model=FolderListResponse)
async def list_folders(
    ctx: RequestContext = Depends(get_request_context),
) -> FolderListResponse:
    """Folders with their document counts. Readable by every role."""
    rows = await list_folders_with_counts(ctx.session)
    return FolderListResponse(folders=[to_folder_response(f, count) for f, count in rows])


@router.post("/folders", response_model=FolderResponse, status_code=status.HTTP_201_CREATED)
async def create_folder_route(
    request: FolderCreate,
    ctx: RequestContext = Depends(require_admin),
) -> FolderResponse:
    if request.parent_id and not await ctx.session.get(Folder, request.parent_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Parent folder not found"
        )

    folder = await create_folder(
        ctx.session,
        request.name,
        ctx.user_id,
        parent_id=request.parent_id,
        vector_namespace=request.vector_namespace,
        folder_type=request.folder_type,
        priority=request.priority,
    )
    await ctx.session.commit()
    return to_folder_response(folder)


@router.patch("/folders/{folder_id}", response_model=FolderResponse)
async def update_folder(
    folder_id: UUID,
    request: FolderUpdate,
    ctx: RequestContext = Depends(require_admin),
) -> FolderResponse:
    """Rename, re-parent or re-route a folder. Send parent_id: null to move to the root."""
    folder = await ctx.session.get(Folder, folder_id)
    if not folder:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Folder not found")

    if "parent_id" in request.model_fields_set:
        if request.parent_id is not None:
            if not await ctx.session.get(Folder, request.parent_id):
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND, detail="Parent folder not found"
                )
            if await is_descendant(ctx.session, request.parent_id, folder.id):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="A folder cannot be moved inside itself",
                )
        folder.parent_id = request.parent_id

    for field in ("name", "vector_namespace", "folder_type", "priority"):
        if field in request.model_fields_set:
            value = getattr(request, field)
            if value is None and field in ("name", "priority"):
                continue
            setattr(folder, field, value)

    await ctx.session.commit()
    return to_folder_response(folder)


@router.delete("/folders/{folder_id}", response_model=FolderDeleteResponse)
async def delete_folder_route(
    folder_id: UUID,
    ctx: RequestContext = Depends(require_admin),
) -> FolderDeleteResponse:
    """Delete a folder; its documents and sub-folders become unassigned."""
    folder = await ctx.session.get(Folder, folder_id)
    if not folder:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Folder not found")

    unassigned = await delete_folder(ctx.session, folder)
    return FolderDeleteResponse(id=folder_id, documents_unassigned=unassigned)


@router.post("/folders/provision", response_model=FolderListResponse)
async def provision_folders_route(
    ctx: RequestContext = Depends(require_admin),
) -> FolderListResponse:
    """Create the configured routing folders that don't exist yet."""
    folders = await provision_folders(ctx.session, ctx.user_id)
    return FolderListResponse(folders=[to_folder_response(f) for f in folders])


# ============================================================================
# Curated Q&A
# ============================================================================


@router.get("/faq", response_model=FaqListResponse)
async def list_faq(
    category: str | None = None,
    active: bool | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    ctx: RequestContext = Depends(require_admin),
) -> FaqListResponse:
    criteria = []
    if category:
        criteria.append(FaqEntry.category == category)
    if active is not None:
        criteria.append(FaqEntry.is_active == active)

    result = await ctx.session.execute(select(func.count(FaqEntry.id)).where(*criteria))
    total = result.scalar() or 0

    result = await ctx.session.execute(
        select(FaqEntry)
        .where(*criteria)
        .order_by(FaqEntry.category, FaqEntry.priority.desc(), FaqEntry.updated_at.desc())
        .offset(offset)
        .limit(limit)
    )
    entries = [to_faq_response(e) for e in result.scalars().all()]
    return FaqListResponse(entries=entries, total=total)


@router.post("/faq", response_model=FaqEntryResponse)
async def upsert_faq(
    request: FaqEntryCreate,
    ctx: RequestContext = Depends(require_admin),
) -> FaqEntryResponse:
    """Create an entry, or update the one with the same category and question."""
    entry = await upsert_curated(
        ctx.session,
        CuratedInput(
            question=request.question,
            answer=request.answer,
            category=request.category,
            tags=request.tags,
            priority=request.priority,
            is_active=request.is_active,
        ),
        ctx.user_id,
    )
    await ctx.session.commit()
    return to_faq_response(entry)


@router.patch("/faq/{entry_id}", response_model=FaqEntryResponse)
async def update_faq(
    entry_id: UUID,
    request: FaqEntryUpdate,
    ctx: RequestContext = Depends(require_admin),
) -> FaqEntryResponse:
    entry = await ctx.session.get(FaqEntry, entry_id)
    if not entry:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Entry not found")

    if request.answer is not None:
        entry.answer = request.answer
    if request.tags is not None:
        entry.tags = request.tags
    if request.priority is not None:
        entry.priority = request.priority
    if request.is_active is not None:
        entry.is_active = request.is_active

    await ctx.session.commit()
    return to_faq_response(entry)


@router.delete("/faq/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_faq(
    entry_id: UUID,
    ctx: RequestContext = Depends(require_admin),
) -> None:
    entry = await ctx.session.get(FaqEntry, entry_id)
    if not entry:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Entry not found")
    await ctx.session.delete(entry)
    await ctx.session.commit()


@router.post("/faq/import", response_model=FaqImportResponse)
async def import_faq(
    file: UploadFile = File(...),
    ctx: RequestContext = Depends(require_admin),
) -> FaqImportResponse:
    """Import a tab-separated questions sheet (header line first)."""
    text = (await file.read()).decode("utf-8", errors="replace")
    report = await import_faq_rows(ctx.session, text, ctx.user_id)
    return FaqImportResponse(imported=report.imported, skipped_lines=report.skipped)


# ============================================================================
# Interactions
# ============================================================================


@router.get("/interactions", response_model=InteractionListResponse)
async def get_interactions(
    provenance: Provenance | None = None,
    pending_review: bool | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    ctx: RequestContext = Depends(require_admin),
) -> InteractionListResponse:
    """Cascade answers, newest first. pending_review=true lists unreviewed web answers."""
    interactions = await list_interactions(
        ctx.session,
        provenance=provenance,
        pending_review=pending_review,
        limit=limit,
        offset=offset,
    )
    return InteractionListResponse(interactions=[to_interaction_item(i) for i in interactions])


@router.get("/interactions/stats", response_model=InteractionStatsResponse)
async def interaction_stats(
    ctx: RequestContext = Depends(require_admin),
) -> InteractionStatsResponse:
    return InteractionStatsResponse(**await get_interaction_stats(ctx.session))


@router.post("/interactions/{interaction_id}/reviewed", response_model=InteractionItem)
async def review_interaction(
    interaction_id: UUID,
    ctx: RequestContext = Depends(require_admin),
) -> InteractionItem:
    interaction = await mark_interaction_reviewed(ctx.session, interaction_id)
    if not interaction:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Interaction not found")
    return to_interaction_item(interaction)
