import logging
from dataclasses import asdict
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from pydantic import ValidationError

from knowledge.api.deps import get_file_store, require_manager
from knowledge.auth import RequestContext
from knowledge.errors import FolderNotFound, TicketAlreadyPlaced, TicketExpired, TicketNotFound
from knowledge.models import Folder, StagingTicket, UploadMode
from knowledge.schemas import (
    DuplicateCheckRequest,
    DuplicateCheckResponse,
    DuplicateWarningItem,
    IngestResponse,
    PermissionFlags,
    PlacedDocumentItem,
    PlaceRequest,
    RejectedFileItem,
    StagedFileItem,
    StageResponse,
)
from knowledge.services.ingestion import (
    IngestResult,
    PlacementRequest,
    UploadedFile,
    check_duplicate_names,
    ingest,
    place_ticket,
    stage_files,
)
from knowledge.services.permissions import PartialPermissionSet
from knowledge.services.storage import FileStore

logger = logging.getLogger(__name__)
router = APIRouter()


async def read_uploads(
    files: list[UploadFile],
    relative_paths: list[str] | None,
) -> list[UploadedFile]:
    if relative_paths and len(relative_paths) != len(files):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="relative_paths must have one entry per file",
        )

    uploads = []
    for i, upload in enumerate(files):
        uploads.append(
            UploadedFile(
                filename=upload.filename or f"upload-{i + 1}",
                data=await upload.read(),
                content_type=upload.content_type,
                relative_path=relative_paths[i] if relative_paths else None,
            )
        )
    return uploads


def to_ingest_response(result: IngestResult) -> IngestResponse:
    return IngestResponse(
        placed=[PlacedDocumentItem(**asdict(p)) for p in result.placed],
        rejected=[RejectedFileItem(**asdict(r)) for r in result.rejected],
        duplicates=[DuplicateWarningItem(**asdict(d)) for d in result.duplicates],
    )


@router.post("/v0/ingest/stage", response_model=StageResponse)
async def stage_upload(
    files: list[UploadFile] = File(...),
    upload_mode: UploadMode = Form(UploadMode.FILES),
    relative_paths: list[str] | None = Form(None),
    ctx: RequestContext = Depends(require_manager),
    store: FileStore = Depends(get_file_store),
) -> StageResponse:
    """
    Step one of an upload: validate the batch, flag duplicates, and stage
    the accepted files. Returns a ticket id for placement.
    """
    uploads = await read_uploads(files, relative_paths)
    result = await stage_files(ctx.session, uploads, upload_mode, ctx.user_id, store)

    return StageResponse(
        ticket_id=result.ticket_id,
        upload_mode=upload_mode,
        expires_at=result.expires_at,
        staged=[StagedFileItem(**asdict(s)) for s in result.staged],
        rejected=[RejectedFileItem(**asdict(r)) for r in result.rejected],
        duplicates=[DuplicateWarningItem(**asdict(d)) for d in result.duplicates],
    )


@router.post("/v0/ingest/place", response_model=IngestResponse)
async def place_upload(
    request: PlaceRequest,
    ctx: RequestContext = Depends(require_manager),
    store: FileStore = Depends(get_file_store),
) -> IngestResponse:
    """Step two: move a staged batch into the corpus."""
    ticket = await ctx.session.get(StagingTicket, request.ticket_id)
    if ticket and ticket.created_by != ctx.user_id and not ctx.is_admin:
        ticket = None
    if not ticket:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Staging ticket not found"
        )

    placement = PlacementRequest(
        ticket_id=request.ticket_id,
        folder_id=request.folder_id,
        category=request.category,
        permissions=PartialPermissionSet.from_dict(request.permissions.model_dump()),
        display_names=request.display_names,
        confirm_duplicates=request.confirm_duplicates,
    )

    try:
        result = await place_ticket(ctx.session, placement, ctx.user_id, store)
    except TicketNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except FolderNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except TicketExpired as e:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=str(e)) from e
    except TicketAlreadyPlaced as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    return to_ingest_response(result)


@router.post("/v0/ingest", response_model=IngestResponse)
async def upload_and_place(
    files: list[UploadFile] = File(...),
    upload_mode: UploadMode = Form(UploadMode.FILES),
    relative_paths: list[str] | None = Form(None),
    folder_id: UUID | None = Form(None),
    category: str | None = Form(None),
    permissions: str | None = Form(None, description="JSON object of permission flags"),
    confirm_duplicates: bool = Form(False),
    ctx: RequestContext = Depends(require_manager),
    store: FileStore = Depends(get_file_store),
) -> IngestResponse:
    """Stage and place in one request. Unconfirmed duplicates are held back."""
    flags = PermissionFlags()
    if permissions:
        try:
            flags = PermissionFlags.model_validate_json(permissions)
        except ValidationError as e:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
            ) from e

    if folder_id and not await ctx.session.get(Folder, folder_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Folder not found")

    uploads = await read_uploads(files, relative_paths)
    result = await ingest(
        ctx.session,
        uploads,
        upload_mode,
        ctx.user_id,
        store,
        folder_id=folder_id,
        permissions=PartialPermissionSet.from_dict(flags.model_dump()),
        confirm_duplicates=confirm_duplicates,
        category=category,
    )
    return to_ingest_response(result)


@router.post("/v0/ingest/check-duplicates", response_model=DuplicateCheckResponse)
async def check_duplicates(
    request: DuplicateCheckRequest,
    ctx: RequestContext = Depends(require_manager),
) -> DuplicateCheckResponse:
    """Warn about filenames already in the corpus before uploading anything."""
    warnings = await check_duplicate_names(ctx.session, request.names)
    return DuplicateCheckResponse(
        duplicates=[DuplicateWarningItem(**asdict(w)) for w in warnings]
    )
