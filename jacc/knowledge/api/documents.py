import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from knowledge.api.deps import get_file_store
from knowledge.auth import RequestContext, get_request_context, require_admin
from knowledge.errors import FolderNotFound
from knowledge.models import Document
from knowledge.schemas import (
    BulkPermissionsResponse,
    BulkPermissionsUpdate,
    DocumentListResponse,
    DocumentResponse,
    DocumentUpdate,
    PermissionFlags,
    PermissionSetResponse,
    RevectorizeResponse,
)
from knowledge.services.documents import (
    bulk_update_permissions,
    delete_document,
    get_readable_document,
    list_documents,
    move_document,
    rename_document,
    request_revectorize,
    update_permissions,
)
from knowledge.services.permissions import PartialPermissionSet, PermissionSet
from knowledge.services.storage import FileStore

logger = logging.getLogger(__name__)
router = APIRouter()


def to_document_response(document: Document) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        original_name=document.original_name,
        display_name=document.display_name,
        folder_id=document.folder_id,
        owner_id=document.owner_id,
        mime_type=document.mime_type,
        size_bytes=document.size_bytes,
        content_hash=document.content_hash,
        permissions=PermissionSetResponse(**PermissionSet.from_document(document).as_dict()),
        vectorization_status=document.vectorization_status,
        vectorization_error=document.vectorization_error,
        last_vectorized_at=document.last_vectorized_at,
        created_at=document.created_at,
        updated_at=document.updated_at,
    )


async def get_editable_document(document_id: UUID, ctx: RequestContext) -> Document:
    """The document if the caller can see it and is its owner or an admin."""
    document = await get_readable_document(ctx.session, document_id, ctx.role)
    if not document:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    if not ctx.is_admin and document.owner_id != ctx.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the owner or an admin can change this document",
        )
    return document


@router.get("/v0/documents", response_model=DocumentListResponse)
async def get_documents(
    folder_id: UUID | None = None,
    unassigned: bool = False,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    ctx: RequestContext = Depends(get_request_context),
) -> DocumentListResponse:
    """List documents the caller's role may read."""
    documents, total = await list_documents(
        ctx.session,
        ctx.role,
        folder_id=folder_id,
        unassigned_only=unassigned,
        limit=limit,
        offset=offset,
    )
    return DocumentListResponse(documents=[to_document_response(d) for d in documents], total=total)


# Registered before /v0/documents/{document_id} routes so "permissions"
# is not parsed as a document id.
@router.patch("/v0/documents/permissions", response_model=BulkPermissionsResponse)
async def bulk_permissions(
    request: BulkPermissionsUpdate,
    ctx: RequestContext = Depends(require_admin),
) -> BulkPermissionsResponse:
    """Apply one permission update to many documents."""
    documents, not_found = await bulk_update_permissions(
        ctx.session,
        request.document_ids,
        PartialPermissionSet.from_dict(request.permissions.model_dump()),
    )
    return BulkPermissionsResponse(
        documents=[to_document_response(d) for d in documents],
        not_found=not_found,
    )


@router.get("/v0/documents/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
) -> DocumentResponse:
    document = await get_readable_document(ctx.session, document_id, ctx.role)
    if not document:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return to_document_response(document)


@router.patch("/v0/documents/{document_id}", response_model=DocumentResponse)
async def update_document(
    document_id: UUID,
    request: DocumentUpdate,
    ctx: RequestContext = Depends(get_request_context),
) -> DocumentResponse:
    """Rename, move, or (admins only) reassign a document."""
    document = await get_editable_document(document_id, ctx)

    if "folder_id" in request.model_fields_set:
        try:
            await move_document(ctx.session, document, request.folder_id)
        except FolderNotFound as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    if request.display_name is not None:
        await rename_document(ctx.session, document, request.display_name)
    if request.owner_id is not None:
        if not ctx.is_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="Only admins can reassign documents"
            )
        document.owner_id = request.owner_id

    await ctx.session.commit()
    return to_document_response(document)


@router.patch("/v0/documents/{document_id}/permissions", response_model=DocumentResponse)
async def update_document_permissions(
    document_id: UUID,
    request: PermissionFlags,
    ctx: RequestContext = Depends(get_request_context),
) -> DocumentResponse:
    document = await get_editable_document(document_id, ctx)
    update_permissions(document, PartialPermissionSet.from_dict(request.model_dump()))
    await ctx.session.commit()
    return to_document_response(document)


@router.post("/v0/documents/{document_id}/vectorize", response_model=RevectorizeResponse)
async def revectorize_document(
    document_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
) -> RevectorizeResponse:
    """Queue the document for (re-)indexing regardless of its auto-vectorize flag."""
    document = await get_editable_document(document_id, ctx)
    job = await request_revectorize(ctx.session, document)
    return RevectorizeResponse(
        document_id=document.id,
        vectorization_status=document.vectorization_status,
        job_id=job.id if job else None,
    )


@router.delete("/v0/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_document(
    document_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    store: FileStore = Depends(get_file_store),
) -> None:
    document = await get_editable_document(document_id, ctx)
    await delete_document(ctx.session, document, store)
