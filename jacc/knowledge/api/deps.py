"""Providers for the pipeline's external collaborators.

Tests swap these out through ``app.dependency_overrides``.
"""

from fastapi import Depends, HTTPException, status

from knowledge.auth import RequestContext, get_request_context
from knowledge.models import Role
from knowledge.services.embeddings import Embedder, get_embedder
from knowledge.services.retrieval import WebSearcher
from knowledge.services.storage import FileStore
from knowledge.services.web_search import WebSearchClient


def get_file_store() -> FileStore:
    return FileStore()


def get_embedder_dependency() -> Embedder | None:
    return get_embedder()


def get_web_searcher() -> WebSearcher | None:
    return WebSearchClient()


async def require_manager(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    """Managers and admins; agents only read."""
    if ctx.role not in (Role.ADMIN, Role.MANAGER):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Manager or admin role required"
        )
    return ctx
