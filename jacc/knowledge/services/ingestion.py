"""Two-phase document ingestion.

``stage_files`` validates an upload batch, flags likely duplicates, and
parks the accepted bytes under an expiring staging ticket. ``place_ticket``
consumes the ticket: it moves bytes to permanent storage, creates the
document rows with normalized permissions, and queues vectorization.

Per-file problems are data: every input file ends up in exactly one of
``placed``, ``rejected`` or ``duplicates``. Only storage failures and ticket
state errors are raised.
"""

import io
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path, PurePosixPath
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge.config import settings
from knowledge.errors import (
    FolderNotFound,
    StorageFailure,
    TicketAlreadyPlaced,
    TicketExpired,
    TicketNotFound,
)
from knowledge.models import (
    Document,
    Folder,
    Job,
    JobStatus,
    JobType,
    StagedFile,
    StagingTicket,
    TicketStatus,
    UploadMode,
    VectorizationStatus,
)
from knowledge.services.extraction import ZIP, guess_mime_type
from knowledge.services.folders import get_or_create_path, route_folder
from knowledge.services.permissions import (
    PartialPermissionSet,
    PermissionSet,
    apply_permissions,
    normalize,
)
from knowledge.services.storage import FileStore, content_hash

logger = logging.getLogger(__name__)

# Rejection reasons
INVALID_TYPE = "invalid-type"
TOO_LARGE = "too-large"
EMPTY_FILE = "empty-file"
NESTED_ARCHIVE = "nested-archive"
CORRUPT_ARCHIVE = "corrupt-archive"

# Duplicate kinds
SAME_NAME = "same-name"
SAME_CONTENT = "same-content"


@dataclass
class UploadedFile:
    filename: str
    data: bytes
    content_type: str | None = None
    relative_path: str | None = None  # folder uploads: "Rates/2024/tsys.pdf"


@dataclass
class RejectedFile:
    name: str
    reason: str
    detail: str | None = None


@dataclass
class DuplicateWarning:
    name: str
    kind: str
    existing_document_id: UUID | None = None
    staged_file_id: UUID | None = None


@dataclass
class StagedFileInfo:
    id: UUID
    name: str
    mime_type: str
    size_bytes: int
    relative_path: str | None = None


@dataclass
class StageResult:
    ticket_id: UUID
    expires_at: datetime
    staged: list[StagedFileInfo] = field(default_factory=list)
    rejected: list[RejectedFile] = field(default_factory=list)
    duplicates: list[DuplicateWarning] = field(default_factory=list)


@dataclass
class PlacedDocument:
    document_id: UUID
    name: str
    display_name: str
    folder_id: UUID | None
    vectorization_status: VectorizationStatus


@dataclass
class IngestResult:
    placed: list[PlacedDocument] = field(default_factory=list)
    rejected: list[RejectedFile] = field(default_factory=list)
    duplicates: list[DuplicateWarning] = field(default_factory=list)


@dataclass
class PlacementRequest:
    ticket_id: UUID
    folder_id: UUID | None = None
    category: str | None = None
    permissions: PartialPermissionSet = field(default_factory=PartialPermissionSet)
    # Keyed by staged file id or original filename
    display_names: dict[str, str] = field(default_factory=dict)
    confirm_duplicates: bool = False


@dataclass
class _Candidate:
    """A file ready for placement: a staged file or one member of a staged archive."""

    name: str
    data: bytes
    mime_type: str
    relative_path: str | None
    staged_file_id: UUID
    from_archive: bool = False


def naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def default_display_name(filename: str) -> str:
    return Path(filename).stem or filename


def unique_name(base: str, taken: set[str]) -> str:
    """Append " (2)", " (3)", ... until the name is free (case-insensitive)."""
    if base.lower() not in taken:
        return base
    n = 2
    while f"{base} ({n})".lower() in taken:
        n += 1
    return f"{base} ({n})"


def folder_parts(relative_path: str | None) -> list[str]:
    """Directory components of an upload's relative path, without the filename."""
    if not relative_path:
        return []
    parts = PurePosixPath(relative_path.replace("\\", "/")).parts[:-1]
    return [p for p in parts if p not in ("", ".", "..", "/")]


# ============================================================================
# Validation
# ============================================================================


def validate_file(
    name: str,
    data: bytes,
    content_type: str | None = None,
    inside_archive: bool = False,
) -> tuple[str, RejectedFile | None]:
    """Return the resolved MIME type and a rejection, if any."""
    mime_type = guess_mime_type(name, content_type)

    if len(data) == 0:
        return mime_type, RejectedFile(name=name, reason=EMPTY_FILE)
    if len(data) > settings.max_upload_bytes:
        return mime_type, RejectedFile(
            name=name,
            reason=TOO_LARGE,
            detail=f"{len(data)} bytes exceeds the {settings.max_upload_bytes} byte limit",
        )
    if inside_archive and mime_type == ZIP:
        return mime_type, RejectedFile(name=name, reason=NESTED_ARCHIVE)
    if mime_type not in settings.allowed_mime_types:
        return mime_type, RejectedFile(name=name, reason=INVALID_TYPE, detail=mime_type)

    return mime_type, None


def check_archive(name: str, data: bytes) -> RejectedFile | None:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            bad_member = archive.testzip()
    except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError) as e:
        return RejectedFile(name=name, reason=CORRUPT_ARCHIVE, detail=str(e))
    if bad_member:
        return RejectedFile(name=name, reason=CORRUPT_ARCHIVE, detail=f"bad member {bad_member}")
    return None


def expand_archive(
    archive_name: str,
    data: bytes,
    staged_file_id: UUID,
) -> tuple[list[_Candidate], list[RejectedFile]]:
    """Validate every member of a zip individually."""
    candidates: list[_Candidate] = []
    rejected: list[RejectedFile] = []

    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        return [], [RejectedFile(name=archive_name, reason=CORRUPT_ARCHIVE, detail=str(e))]

    with archive:
        for info in archive.infolist():
            if info.is_dir() or info.filename.startswith("__MACOSX/"):
                continue
            name = PurePosixPath(info.filename).name
            if not name or name.startswith("."):
                continue
            if info.file_size > settings.max_upload_bytes:
                rejected.append(RejectedFile(name=name, reason=TOO_LARGE))
                continue
            try:
                member_data = archive.read(info)
            except (zipfile.BadZipFile, OSError) as e:
                rejected.append(RejectedFile(name=name, reason=CORRUPT_ARCHIVE, detail=str(e)))
                continue

            mime_type, rejection = validate_file(name, member_data, inside_archive=True)
            if rejection:
                rejected.append(rejection)
                continue
            candidates.append(
                _Candidate(
                    name=name,
                    data=member_data,
                    mime_type=mime_type,
                    relative_path=None,
                    staged_file_id=staged_file_id,
                    from_archive=True,
                )
            )

    logger.info(
        f"Expanded {archive_name}: {len(candidates)} members accepted, {len(rejected)} rejected"
    )
    return candidates, rejected


# ============================================================================
# Duplicate detection
# ============================================================================


class DuplicateDetector:
    """
    Flags candidates whose content matches an existing document, or whose
    filename matches an existing document or an earlier file of the batch.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.batch_names: set[str] = set()
        self.batch_hashes: set[str] = set()

    async def check(self, name: str, digest: str) -> tuple[str, UUID | None] | None:
        lowered = name.lower()
        try:
            if digest in self.batch_hashes:
                return SAME_CONTENT, None
            existing = await self._existing_by_hash(digest)
            if existing:
                return SAME_CONTENT, existing
            if lowered in self.batch_names:
                return SAME_NAME, None
            existing = await self._existing_by_name(lowered)
            if existing:
                return SAME_NAME, existing
            return None
        finally:
            self.batch_names.add(lowered)
            self.batch_hashes.add(digest)

    async def _existing_by_hash(self, digest: str) -> UUID | None:
        result = await self.session.execute(
            select(Document.id).where(Document.content_hash == digest).limit(1)
        )
        return result.scalar_one_or_none()

    async def _existing_by_name(self, lowered: str) -> UUID | None:
        result = await self.session.execute(
            select(Document.id).where(func.lower(Document.original_name) == lowered).limit(1)
        )
        return result.scalar_one_or_none()


async def check_duplicate_names(session: AsyncSession, names: list[str]) -> list[DuplicateWarning]:
    """Name-only pre-check, usable before anything is uploaded."""
    warnings = []
    seen: set[str] = set()
    for name in names:
        lowered = name.lower()
        if lowered in seen:
            warnings.append(DuplicateWarning(name=name, kind=SAME_NAME))
            continue
        seen.add(lowered)
        result = await session.execute(
            select(Document.id).where(func.lower(Document.original_name) == lowered).limit(1)
        )
        existing = result.scalar_one_or_none()
        if existing:
            warnings.append(
                DuplicateWarning(name=name, kind=SAME_NAME, existing_document_id=existing)
            )
    return warnings


# ============================================================================
# Staging
# ============================================================================


async def stage_files(
    session: AsyncSession,
    files: list[UploadedFile],
    upload_mode: UploadMode,
    created_by: str,
    store: FileStore,
) -> StageResult:
    """Validate a batch and park the accepted files under a new ticket."""
    now = datetime.utcnow()
    ticket = StagingTicket(
        id=uuid4(),
        created_by=created_by,
        upload_mode=upload_mode,
        status=TicketStatus.STAGED,
        expires_at=now + timedelta(minutes=settings.staging_ttl_minutes),
        created_at=now,
    )
    result = StageResult(ticket_id=ticket.id, expires_at=ticket.expires_at)
    detector = DuplicateDetector(session)
    staged_rows: list[StagedFile] = []

    try:
        for upload in files:
            mime_type, rejection = validate_file(upload.filename, upload.data, upload.content_type)
            if not rejection and upload_mode == UploadMode.ZIP_EXTRACT and mime_type == ZIP:
                rejection = check_archive(upload.filename, upload.data)
            if rejection:
                logger.info(f"Rejected {upload.filename}: {rejection.reason}")
                result.rejected.append(rejection)
                continue

            staged_id = uuid4()
            digest = content_hash(upload.data)
            duplicate = None
            # Archive members are checked individually at placement
            if not (upload_mode == UploadMode.ZIP_EXTRACT and mime_type == ZIP):
                duplicate = await detector.check(upload.filename, digest)
            if duplicate:
                kind, existing_id = duplicate
                result.duplicates.append(
                    DuplicateWarning(
                        name=upload.filename,
                        kind=kind,
                        existing_document_id=existing_id,
                        staged_file_id=staged_id,
                    )
                )

            staged_path = store.stage(ticket.id, staged_id, upload.data)
            staged_rows.append(
                StagedFile(
                    id=staged_id,
                    ticket_id=ticket.id,
                    position=len(staged_rows),
                    original_name=upload.filename,
                    relative_path=upload.relative_path,
                    mime_type=mime_type,
                    size_bytes=len(upload.data),
                    content_hash=digest,
                    staged_path=staged_path,
                    duplicate_of=duplicate[1] if duplicate else None,
                    duplicate_kind=duplicate[0] if duplicate else None,
                )
            )
            result.staged.append(
                StagedFileInfo(
                    id=staged_id,
                    name=upload.filename,
                    mime_type=mime_type,
                    size_bytes=len(upload.data),
                    relative_path=upload.relative_path,
                )
            )

        session.add(ticket)
        await session.flush()
        session.add_all(staged_rows)
        await session.commit()
    except (StorageFailure, TicketAlreadyPlaced):
        await session.rollback()
        store.discard_ticket(ticket.id)
        raise
    except SQLAlchemyError as e:
        await session.rollback()
        store.discard_ticket(ticket.id)
        logger.exception(f"Failed to record staging ticket {ticket.id}: {e}")
        raise StorageFailure(f"Could not record staging ticket: {e}") from e

    logger.info(
        f"Staged ticket {ticket.id}: {len(result.staged)} staged, "
        f"{len(result.rejected)} rejected, {len(result.duplicates)} duplicate warnings"
    )
    return result


# ============================================================================
# Placement
# ============================================================================


async def get_ticket_for_placement(session: AsyncSession, ticket_id: UUID) -> StagingTicket:
    """Load a placeable ticket, row-locked until the placing transaction ends."""
    result = await session.execute(
        select(StagingTicket)
        .where(StagingTicket.id == ticket_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    ticket = result.scalar_one_or_none()
    if not ticket:
        raise TicketNotFound(f"Staging ticket {ticket_id} not found")
    if ticket.status == TicketStatus.PLACED:
        raise TicketAlreadyPlaced(f"Staging ticket {ticket_id} was already placed")
    if ticket.status == TicketStatus.EXPIRED or naive_utc(ticket.expires_at) <= datetime.utcnow():
        raise TicketExpired(f"Staging ticket {ticket_id} has expired")
    return ticket


async def _resolve_target_folder(session: AsyncSession, request: PlacementRequest) -> UUID | None:
    if request.folder_id:
        folder = await session.get(Folder, request.folder_id)
        if not folder:
            raise FolderNotFound(f"Folder {request.folder_id} not found")
        return folder.id
    if request.category:
        folder = await route_folder(session, request.category)
        if folder:
            logger.info(f"Routed category {request.category} to folder {folder.name}")
            return folder.id
        logger.info(f"No folder for category {request.category}, placing unassigned")
    return None


async def _taken_display_names(session: AsyncSession, folder_id: UUID | None) -> set[str]:
    query = select(Document.display_name)
    if folder_id is None:
        query = query.where(Document.folder_id.is_(None))
    else:
        query = query.where(Document.folder_id == folder_id)
    result = await session.execute(query)
    return {name.lower() for name in result.scalars().all()}


def _requested_display_name(request: PlacementRequest, candidate: _Candidate) -> str:
    name = request.display_names.get(candidate.name)
    # The staged file id of an archive member points at the archive itself
    if not name and not candidate.from_archive:
        name = request.display_names.get(str(candidate.staged_file_id))
    return (name or "").strip() or default_display_name(candidate.name)


def queue_vectorization(
    session: AsyncSession, document: Document, force: bool = False
) -> Job | None:
    """
    Set the document's status and enqueue a job if it auto-vectorizes.
    ``force`` enqueues regardless of the flag (explicit re-vectorize).
    """
    if not (document.auto_vectorize or force):
        document.vectorization_status = VectorizationStatus.SKIPPED
        return None

    document.vectorization_status = VectorizationStatus.PENDING
    document.vectorization_error = None
    job = Job(
        id=uuid4(),
        job_type=JobType.VECTORIZE_DOCUMENT,
        document_id=document.id,
        status=JobStatus.PENDING,
        attempts=0,
    )
    session.add(job)
    return job


async def place_ticket(
    session: AsyncSession,
    request: PlacementRequest,
    placed_by: str,
    store: FileStore,
) -> IngestResult:
    """Commit a staged batch into the corpus."""
    ticket = await get_ticket_for_placement(session, request.ticket_id)
    target_folder_id = await _resolve_target_folder(session, request)
    permissions: PermissionSet = normalize(request.permissions)

    result = await session.execute(
        select(StagedFile)
        .where(StagedFile.ticket_id == ticket.id)
        .order_by(StagedFile.position)
    )
    staged_files = list(result.scalars().all())

    outcome = IngestResult()
    candidates: list[_Candidate] = []
    for staged in staged_files:
        data = store.read(staged.staged_path)
        if ticket.upload_mode == UploadMode.ZIP_EXTRACT and staged.mime_type == ZIP:
            members, rejected = expand_archive(staged.original_name, data, staged.id)
            candidates.extend(members)
            outcome.rejected.extend(rejected)
        else:
            relative_path = None
            if ticket.upload_mode == UploadMode.FOLDER:
                relative_path = staged.relative_path
            candidates.append(
                _Candidate(
                    name=staged.original_name,
                    data=data,
                    mime_type=staged.mime_type,
                    relative_path=relative_path,
                    staged_file_id=staged.id,
                )
            )

    detector = DuplicateDetector(session)
    taken_by_folder: dict[UUID | None, set[str]] = {}
    written_paths: list[str] = []

    try:
        for candidate in candidates:
            digest = content_hash(candidate.data)
            duplicate = await detector.check(candidate.name, digest)
            if duplicate and not request.confirm_duplicates:
                kind, existing_id = duplicate
                outcome.duplicates.append(
                    DuplicateWarning(
                        name=candidate.name,
                        kind=kind,
                        existing_document_id=existing_id,
                        staged_file_id=candidate.staged_file_id,
                    )
                )
                continue

            folder_id = target_folder_id
            parts = folder_parts(candidate.relative_path)
            if parts:
                folder_id = await get_or_create_path(session, target_folder_id, parts, placed_by)

            if folder_id not in taken_by_folder:
                taken_by_folder[folder_id] = await _taken_display_names(session, folder_id)
            taken = taken_by_folder[folder_id]
            display_name = unique_name(_requested_display_name(request, candidate), taken)
            taken.add(display_name.lower())

            document_id = uuid4()
            storage_path = store.place(document_id, candidate.name, candidate.data)
            written_paths.append(storage_path)

            document = Document(
                id=document_id,
                original_name=candidate.name,
                display_name=display_name,
                folder_id=folder_id,
                owner_id=placed_by,
                content_hash=digest,
                size_bytes=len(candidate.data),
                mime_type=candidate.mime_type,
                storage_path=storage_path,
            )
            apply_permissions(document, permissions)
            session.add(document)
            await session.flush()
            queue_vectorization(session, document)

            outcome.placed.append(
                PlacedDocument(
                    document_id=document.id,
                    name=candidate.name,
                    display_name=display_name,
                    folder_id=folder_id,
                    vectorization_status=document.vectorization_status,
                )
            )

        flipped = await session.execute(
            update(StagingTicket)
            .where(StagingTicket.id == ticket.id, StagingTicket.status == TicketStatus.STAGED)
            .values(status=TicketStatus.PLACED)
        )
        if flipped.rowcount != 1:
            raise TicketAlreadyPlaced(f"Staging ticket {ticket.id} was already placed")
        await session.execute(delete(StagedFile).where(StagedFile.ticket_id == ticket.id))
        await session.commit()
    except (StorageFailure, TicketAlreadyPlaced):
        await session.rollback()
        _discard_written(store, written_paths)
        raise
    except SQLAlchemyError as e:
        await session.rollback()
        _discard_written(store, written_paths)
        logger.exception(f"Failed to place ticket {ticket.id}: {e}")
        raise StorageFailure(f"Could not record placed documents: {e}") from e

    store.discard_ticket(ticket.id)
    logger.info(
        f"Placed ticket {ticket.id}: {len(outcome.placed)} placed, "
        f"{len(outcome.rejected)} rejected, {len(outcome.duplicates)} held as duplicates"
    )
    return outcome


def _discard_written(store: FileStore, paths: list[str]) -> None:
    for path in paths:
        try:
            store.delete(path)
        except StorageFailure as e:
            logger.error(f"Could not clean up {path} after failed placement: {e}")


async def ingest(
    session: AsyncSession,
    files: list[UploadedFile],
    upload_mode: UploadMode,
    uploaded_by: str,
    store: FileStore,
    folder_id: UUID | None = None,
    permissions: PartialPermissionSet | None = None,
    confirm_duplicates: bool = False,
    category: str | None = None,
) -> IngestResult:
    """Stage and place in one call; staging rejections carry into the result."""
    staged = await stage_files(session, files, upload_mode, uploaded_by, store)
    placed = await place_ticket(
        session,
        PlacementRequest(
            ticket_id=staged.ticket_id,
            folder_id=folder_id,
            category=category,
            permissions=permissions or PartialPermissionSet(),
            confirm_duplicates=confirm_duplicates,
        ),
        uploaded_by,
        store,
    )
    placed.rejected = staged.rejected + placed.rejected
    return placed


# ============================================================================
# Sweeper
# ============================================================================


async def sweep_expired_tickets(
    session: AsyncSession,
    store: FileStore,
    now: datetime | None = None,
) -> int:
    """Expire unplaced tickets past their deadline and reclaim their bytes."""
    now = now or datetime.utcnow()
    result = await session.execute(
        select(StagingTicket).where(
            StagingTicket.status == TicketStatus.STAGED,
            StagingTicket.expires_at <= now,
        )
    )
    tickets = list(result.scalars().all())

    for ticket in tickets:
        store.discard_ticket(ticket.id)
        await session.execute(delete(StagedFile).where(StagedFile.ticket_id == ticket.id))
        ticket.status = TicketStatus.EXPIRED

    await session.commit()
    if tickets:
        logger.info(f"Expired {len(tickets)} staging tickets")
    return len(tickets)
