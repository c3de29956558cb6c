"""Shared fixtures: a throwaway SQLite database per test, fake embedding and
web-search collaborators, a temp file store, and an ASGI client with bearer
sessions for each role.

Settings are read from the environment at import time, so the overrides
below must run before anything under ``knowledge`` is imported.
"""

import os

os.environ["JACC_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["JACC_OPENAI_API_KEY"] = ""
os.environ["JACC_WEB_SEARCH_API_KEY"] = ""

import re  # noqa: E402
from uuid import uuid4  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

from knowledge.errors import ExternalSearchUnavailable  # noqa: E402
from knowledge.models import Base, Document, Role, VectorizationStatus  # noqa: E402
from knowledge.services.corpus import replace_chunks  # noqa: E402
from knowledge.services.extraction import TEXT, chunk_text  # noqa: E402
from knowledge.services.permissions import (  # noqa: E402
    PartialPermissionSet,
    apply_permissions,
    normalize,
)
from knowledge.services.storage import FileStore, content_hash  # noqa: E402
from knowledge.services.web_search import WebResult  # noqa: E402

# Each keyword is one dimension; the last dimension is a constant so no
# vector is ever all zeros.
KEYWORDS = [
    "clover",
    "qualified",
    "rate",
    "terminal",
    "chargeback",
    "tsys",
    "gateway",
    "refund",
]


class FakeEmbedder:
    """Keyword-presence vectors: texts about the same keywords are close."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail:
            raise RuntimeError("embedding provider unavailable")
        vectors = []
        for text in texts:
            words = set(re.findall(r"[a-z]+", text.lower()))
            vectors.append([1.0 if k in words else 0.0 for k in KEYWORDS] + [0.1])
        return vectors


class FakeWebSearch:
    def __init__(self, content: str | None = None, citations: list[str] | None = None):
        self.content = content
        self.citations = citations or []
        self.calls: list[str] = []

    async def search(self, query: str) -> WebResult:
        self.calls.append(query)
        if self.content is None:
            raise ExternalSearchUnavailable("Web search timed out after 15.0s")
        return WebResult(content=self.content, citations=self.citations)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'jacc.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(tmp_path):
    return FileStore(
        staging_dir=str(tmp_path / "staging"),
        storage_dir=str(tmp_path / "documents"),
    )


@pytest.fixture
def embedder():
    return FakeEmbedder()


async def add_document(
    session,
    name: str,
    text: str = "",
    embedder: FakeEmbedder | None = None,
    permissions: dict | None = None,
    folder_id=None,
    owner_id: str = "manager-1",
) -> Document:
    """Insert a document directly, indexed when an embedder is given."""
    document = Document(
        id=uuid4(),
        original_name=name,
        display_name=name.rsplit(".", 1)[0],
        folder_id=folder_id,
        owner_id=owner_id,
        content_hash=content_hash(f"{name}:{text}".encode()),
        size_bytes=len(text),
        mime_type=TEXT,
        storage_path=f"/nonexistent/{name}",
        vectorization_status=VectorizationStatus.PENDING,
    )
    apply_permissions(document, normalize(PartialPermissionSet.from_dict(permissions)))
    session.add(document)
    await session.flush()

    if embedder is not None and text:
        chunks = chunk_text(text)
        vectors = await embedder.embed([c.text for c in chunks])
        await replace_chunks(session, document, chunks, vectors)
        document.vectorization_status = VectorizationStatus.VECTORIZED

    await session.commit()
    return document


@pytest.fixture
def make_document():
    return add_document


# ── API client ───────────────────────────────────────────────────


TOKENS = {
    Role.ADMIN: ("admin-token", "admin-1"),
    Role.MANAGER: ("manager-token", "manager-1"),
    Role.AGENT: ("agent-token", "agent-1"),
}


def auth(role: Role) -> dict[str, str]:
    return {"Authorization": f"Bearer {TOKENS[role][0]}"}


@pytest.fixture
def web():
    return FakeWebSearch()


@pytest_asyncio.fixture
async def client(session_factory, store, embedder, web):
    from knowledge.api.deps import get_embedder_dependency, get_file_store, get_web_searcher
    from knowledge.auth import InMemorySessionStore, get_session_store
    from knowledge.db import get_session
    from knowledge.main import app

    sessions = InMemorySessionStore()
    for role, (token, user_id) in TOKENS.items():
        await sessions.set(token, user_id, role)

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_session_store] = lambda: sessions
    app.dependency_overrides[get_file_store] = lambda: store
    app.dependency_overrides[get_embedder_dependency] = lambda: embedder
    app.dependency_overrides[get_web_searcher] = lambda: web

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def headers():
    return {role: auth(role) for role in TOKENS}
