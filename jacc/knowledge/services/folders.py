import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from uuid import UUID, uuid4

import yaml
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge.config import settings
from knowledge.models import Document, Folder

logger = logging.getLogger(__name__)

DEFAULT_FOLDERS_PATH = Path(__file__).resolve().parent.parent / "folders.yaml"


@dataclass
class FolderSpec:
    name: str
    vector_namespace: str | None = None
    folder_type: str | None = None
    priority: int = 0


def load_folder_specs(path: str | None = None) -> list[FolderSpec]:
    """Read folder specs from YAML; the packaged defaults when no path is set."""
    source = Path(path or settings.folders_config_path or DEFAULT_FOLDERS_PATH)
    with open(source, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    specs = []
    for item in data.get("folders", []):
        specs.append(
            FolderSpec(
                name=item["name"],
                vector_namespace=item.get("vector_namespace"),
                folder_type=item.get("folder_type"),
                priority=int(item.get("priority", 0)),
            )
        )
    return specs


async def get_folder_by_name(
    session: AsyncSession,
    name: str,
    parent_id: UUID | None = None,
) -> Folder | None:
    query = select(Folder).where(Folder.name == name)
    if parent_id is None:
        query = query.where(Folder.parent_id.is_(None))
    else:
        query = query.where(Folder.parent_id == parent_id)
    result = await session.execute(query.order_by(Folder.created_at).limit(1))
    return result.scalar_one_or_none()


async def create_folder(
    session: AsyncSession,
    name: str,
    owner_id: str,
    parent_id: UUID | None = None,
    vector_namespace: str | None = None,
    folder_type: str | None = None,
    priority: int = 0,
) -> Folder:
    folder = Folder(
        id=uuid4(),
        name=name,
        owner_id=owner_id,
        parent_id=parent_id,
        vector_namespace=vector_namespace,
        folder_type=folder_type,
        priority=priority,
    )
    session.add(folder)
    await session.flush()
    logger.info(f"Created folder {folder.id} ({name})")
    return folder


async def get_or_create_path(
    session: AsyncSession,
    root_id: UUID | None,
    parts: list[str],
    owner_id: str,
) -> UUID | None:
    """Walk (creating as needed) a chain of sub-folder names under root_id."""
    parent_id = root_id
    for part in parts:
        folder = await get_folder_by_name(session, part, parent_id)
        if not folder:
            folder = await create_folder(session, part, owner_id, parent_id=parent_id)
        parent_id = folder.id
    return parent_id


async def provision_folders(
    session: AsyncSession,
    owner_id: str,
    specs: list[FolderSpec] | None = None,
) -> list[Folder]:
    """Create the routing folders that don't exist yet. Idempotent by name."""
    if specs is None:
        specs = load_folder_specs()

    folders = []
    for spec in specs:
        folder = await get_folder_by_name(session, spec.name)
        if folder:
            logger.info(f"Folder {spec.name} already exists")
        else:
            folder = await create_folder(
                session,
                spec.name,
                owner_id,
                vector_namespace=spec.vector_namespace,
                folder_type=spec.folder_type,
                priority=spec.priority,
            )
        folders.append(folder)

    await session.commit()
    return folders


async def route_folder(session: AsyncSession, category: str) -> Folder | None:
    """Pick the folder for a routing category: highest priority, then oldest."""
    result = await session.execute(
        select(Folder)
        .where(Folder.folder_type == category)
        .order_by(Folder.priority.desc(), Folder.created_at.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_folders_with_counts(session: AsyncSession) -> list[tuple[Folder, int]]:
    doc_counts = (
        select(Document.folder_id, func.count(Document.id).label("document_count"))
        .where(Document.folder_id.is_not(None))
        .group_by(Document.folder_id)
        .subquery()
    )
    result = await session.execute(
        select(Folder, func.coalesce(doc_counts.c.document_count, 0))
        .outerjoin(doc_counts, doc_counts.c.folder_id == Folder.id)
        .order_by(Folder.priority.desc(), Folder.name)
    )
    return [(folder, count) for folder, count in result.all()]


async def is_descendant(session: AsyncSession, folder_id: UUID, ancestor_id: UUID) -> bool:
    """True if folder_id is ancestor_id or sits anywhere below it."""
    current: UUID | None = folder_id
    seen: set[UUID] = set()
    while current is not None and current not in seen:
        if current == ancestor_id:
            return True
        seen.add(current)
        folder = await session.get(Folder, current)
        current = folder.parent_id if folder else None
    return False


async def delete_folder(session: AsyncSession, folder: Folder) -> int:
    """
    Delete a folder. Its documents and child folders are kept and become
    unassigned. Returns the number of documents unassigned.
    """
    now = datetime.utcnow()
    result = await session.execute(
        update(Document)
        .where(Document.folder_id == folder.id)
        .values(folder_id=None, updated_at=now)
    )
    await session.execute(
        update(Folder).where(Folder.parent_id == folder.id).values(parent_id=None, updated_at=now)
    )
    await session.delete(folder)
    await session.commit()
    logger.info(f"Deleted folder {folder.id}, unassigned {result.rowcount} documents")
    return result.rowcount
