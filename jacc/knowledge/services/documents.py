"""Document management after placement: listing, renaming, moving,
permission edits, re-vectorization and deletion."""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge.errors import FolderNotFound
from knowledge.models import Document, Folder, Job, Role
from knowledge.services.corpus import delete_chunks
from knowledge.services.ingestion import queue_vectorization, unique_name
from knowledge.services.permissions import (
    PartialPermissionSet,
    PermissionSet,
    apply_permissions,
    normalize,
    readable_by,
)
from knowledge.services.storage import FileStore

logger = logging.getLogger(__name__)


async def list_documents(
    session: AsyncSession,
    role: Role,
    folder_id: UUID | None = None,
    unassigned_only: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Document], int]:
    """Documents the role may read, newest first, with the total count."""
    criteria = [readable_by(role)]
    if folder_id:
        criteria.append(Document.folder_id == folder_id)
    elif unassigned_only:
        criteria.append(Document.folder_id.is_(None))

    result = await session.execute(select(func.count(Document.id)).where(*criteria))
    total = result.scalar() or 0

    result = await session.execute(
        select(Document)
        .where(*criteria)
        .order_by(Document.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def get_readable_document(
    session: AsyncSession,
    document_id: UUID,
    role: Role,
) -> Document | None:
    result = await session.execute(
        select(Document).where(Document.id == document_id, readable_by(role))
    )
    return result.scalar_one_or_none()


async def rename_document(session: AsyncSession, document: Document, display_name: str) -> str:
    """Set a display name, suffixed if another document in the folder has it."""
    query = select(Document.display_name).where(Document.id != document.id)
    if document.folder_id is None:
        query = query.where(Document.folder_id.is_(None))
    else:
        query = query.where(Document.folder_id == document.folder_id)
    result = await session.execute(query)
    taken = {name.lower() for name in result.scalars().all()}

    document.display_name = unique_name(display_name.strip(), taken)
    document.updated_at = datetime.utcnow()
    return document.display_name


async def move_document(session: AsyncSession, document: Document, folder_id: UUID | None) -> None:
    if folder_id is not None and not await session.get(Folder, folder_id):
        raise FolderNotFound(f"Folder {folder_id} not found")
    document.folder_id = folder_id
    # Keep display names unique in the destination
    await rename_document(session, document, document.display_name)


def update_permissions(document: Document, update: PartialPermissionSet) -> PermissionSet:
    permissions = normalize(update, PermissionSet.from_document(document))
    apply_permissions(document, permissions)
    document.updated_at = datetime.utcnow()
    return permissions


async def bulk_update_permissions(
    session: AsyncSession,
    document_ids: list[UUID],
    update: PartialPermissionSet,
) -> tuple[list[Document], list[UUID]]:
    """Apply one update to many documents; each is normalized against its own state."""
    result = await session.execute(select(Document).where(Document.id.in_(document_ids)))
    documents = {d.id: d for d in result.scalars().all()}

    for document in documents.values():
        update_permissions(document, update)
    await session.commit()

    not_found = [doc_id for doc_id in document_ids if doc_id not in documents]
    logger.info(f"Updated permissions on {len(documents)} documents ({len(not_found)} not found)")
    return list(documents.values()), not_found


async def request_revectorize(session: AsyncSession, document: Document) -> Job | None:
    job = queue_vectorization(session, document, force=True)
    document.updated_at = datetime.utcnow()
    await session.commit()
    return job


async def delete_document(session: AsyncSession, document: Document, store: FileStore) -> None:
    """Remove a document, its index entries, pending jobs and stored bytes."""
    storage_path = document.storage_path
    await delete_chunks(session, document.id)
    await session.execute(delete(Job).where(Job.document_id == document.id))
    await session.delete(document)
    await session.commit()

    store.delete(storage_path)
    logger.info(f"Deleted document {document.id}")
