"""Retrieval cascade.

Tiers are consulted strictly in order (curated Q&A, document corpus, web
search) and the first one that produces an answer ends the run. A tier is
an async callable ``(query, context) -> Answer | None``.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from knowledge.config import settings
from knowledge.errors import ExternalSearchUnavailable
from knowledge.models import Provenance
from knowledge.services.corpus import RequesterContext, query_curated, rank_chunks
from knowledge.services.embeddings import Embedder
from knowledge.services.observability import InteractionTracker
from knowledge.services.synthesis import synthesize_answer
from knowledge.services.web_search import WebResult

logger = logging.getLogger(__name__)

WEB_UNAVAILABLE = "web-unavailable"
NO_ANSWER_TEXT = (
    "I couldn't find an answer to that in our knowledge base. "
    "Try rephrasing, or ask an admin to add it."
)


class WebSearcher(Protocol):
    async def search(self, query: str) -> WebResult: ...


@dataclass
class Answer:
    provenance: Provenance
    text: str | None
    confidence: float | None = None
    citations: list[dict[str, Any]] = field(default_factory=list)
    notice: str | None = None
    from_internal_memory: bool = True
    interaction_id: UUID | None = None


@dataclass
class CascadeContext:
    session: AsyncSession
    requester: RequesterContext
    embedder: Embedder | None = None
    web: WebSearcher | None = None


Tier = Callable[[str, CascadeContext], Awaitable[Answer | None]]


async def faq_tier(query: str, ctx: CascadeContext) -> Answer | None:
    matches = await query_curated(ctx.session, query, limit=settings.faq_top_k)
    if not matches or matches[0].score < settings.faq_match_threshold:
        return None

    best = matches[0]
    logger.info(f"Curated hit {best.entry.id} (score={best.score:.2f})")
    return Answer(
        provenance=Provenance.FAQ,
        text=best.entry.answer,
        confidence=best.score,
        citations=[{"type": "faq", "id": str(best.entry.id), "title": best.entry.question}],
    )


async def documents_tier(query: str, ctx: CascadeContext) -> Answer | None:
    if ctx.embedder is None:
        return None

    try:
        [vector] = await ctx.embedder.embed([query])
    except Exception as e:
        # Embedding provider down: treat as a miss and let web search try
        logger.exception(f"Query embedding failed: {e}")
        return None

    matches = await rank_chunks(ctx.session, vector, ctx.requester, limit=settings.document_top_k)

    hits = [m for m in matches if m.score >= settings.document_similarity_threshold]
    if not hits:
        return None

    citations: list[dict[str, Any]] = []
    seen: set[UUID] = set()
    for hit in hits:
        if hit.document_id not in seen:
            seen.add(hit.document_id)
            citations.append(
                {"type": "document", "id": str(hit.document_id), "title": hit.document_name}
            )

    logger.info(f"Document hit: {len(hits)} chunks from {len(citations)} documents")
    return Answer(
        provenance=Provenance.DOCUMENTS,
        text=await synthesize_answer(query, hits),
        confidence=hits[0].score,
        citations=citations,
    )


async def web_tier(query: str, ctx: CascadeContext) -> Answer | None:
    try:
        if ctx.web is None:
            raise ExternalSearchUnavailable("No web search client configured")
        result = await ctx.web.search(query)
    except ExternalSearchUnavailable as e:
        logger.warning(f"Web search unavailable: {e}")
        return Answer(
            provenance=Provenance.NONE,
            text=NO_ANSWER_TEXT,
            notice=WEB_UNAVAILABLE,
            from_internal_memory=False,
        )

    return Answer(
        provenance=Provenance.WEB,
        text=result.content,
        citations=[{"type": "url", "url": url} for url in result.citations],
        from_internal_memory=False,
    )


TIERS: tuple[Tier, ...] = (faq_tier, documents_tier, web_tier)


async def run_tiers(query: str, ctx: CascadeContext, tiers: tuple[Tier, ...] = TIERS) -> Answer:
    for tier in tiers:
        answer = await tier(query, ctx)
        if answer is not None:
            return answer
    return Answer(provenance=Provenance.NONE, text=NO_ANSWER_TEXT, from_internal_memory=False)


async def answer_query(
    query: str,
    ctx: CascadeContext,
    chat_id: UUID | None = None,
    tiers: tuple[Tier, ...] = TIERS,
) -> Answer:
    """Run the cascade and record the outcome as an Interaction."""
    async with InteractionTracker(
        ctx.session,
        query,
        ctx.requester.role,
        user_id=ctx.requester.user_id,
        chat_id=chat_id,
    ) as tracker:
        answer = await run_tiers(query, ctx, tiers)
        tracker.set_answer(
            answer.provenance,
            answer.text,
            citations=answer.citations,
            confidence=answer.confidence,
            notice=answer.notice,
        )
        answer.interaction_id = tracker.interaction_id

    return answer
