"""Tests for folder provisioning, routing and deletion."""

import pytest
from sqlalchemy import select

from knowledge.models import Document, Folder
from knowledge.services.folders import (
    FolderSpec,
    create_folder,
    delete_folder,
    get_or_create_path,
    is_descendant,
    list_folders_with_counts,
    load_folder_specs,
    provision_folders,
    route_folder,
)


def test_packaged_folder_specs():
    specs = load_folder_specs()
    names = [s.name for s in specs]
    assert names[0] == "TSYS Documents"
    assert "Terminal Hardware" in names
    assert all(s.folder_type for s in specs)


def test_folder_specs_from_file(tmp_path):
    path = tmp_path / "folders.yaml"
    path.write_text(
        "folders:\n"
        "  - name: Gateways\n"
        "    folder_type: gateway\n"
        "    priority: 5\n"
    )
    assert load_folder_specs(str(path)) == [
        FolderSpec(name="Gateways", folder_type="gateway", priority=5)
    ]


@pytest.mark.asyncio
async def test_provision_is_idempotent(session):
    first = await provision_folders(session, "admin-1")
    second = await provision_folders(session, "admin-1")

    assert [f.id for f in first] == [f.id for f in second]
    rows = (await session.execute(select(Folder))).scalars().all()
    assert len(rows) == len(load_folder_specs())


@pytest.mark.asyncio
async def test_route_prefers_highest_priority(session):
    await provision_folders(session, "admin-1")
    processor = await route_folder(session, "processor")
    sales = await route_folder(session, "sales")

    assert processor.name == "TSYS Documents"
    assert sales.name == "Rate Comparisons"
    assert await route_folder(session, "nonexistent") is None


@pytest.mark.asyncio
async def test_get_or_create_path_reuses_folders(session):
    root = await create_folder(session, "Processors", "admin-1")
    first = await get_or_create_path(session, root.id, ["TSYS", "2024"], "admin-1")
    second = await get_or_create_path(session, root.id, ["TSYS", "2024"], "admin-1")

    assert first == second
    tsys = await session.get(Folder, (await session.get(Folder, first)).parent_id)
    assert tsys.name == "TSYS"
    assert tsys.parent_id == root.id
    assert await is_descendant(session, first, root.id)
    assert not await is_descendant(session, root.id, first)
    assert await get_or_create_path(session, None, [], "admin-1") is None


@pytest.mark.asyncio
async def test_delete_folder_unassigns_contents(session, make_document):
    parent = await create_folder(session, "Rates", "admin-1")
    child = await create_folder(session, "Archive", "admin-1", parent_id=parent.id)
    await session.commit()
    document = await make_document(session, "rates.pdf", folder_id=parent.id)

    counts = dict((f.name, n) for f, n in await list_folders_with_counts(session))
    assert counts == {"Rates": 1, "Archive": 0}

    unassigned = await delete_folder(session, parent)
    assert unassigned == 1

    await session.refresh(document)
    await session.refresh(child)
    assert document.folder_id is None
    assert child.parent_id is None
    assert await session.get(Document, document.id) is not None
