"""Corpus index: the curated Q&A set and the vectorized document chunks.

Curated entries are matched lexically. Document chunks are matched by
cosine similarity, with the role filter applied inside the SQL statement;
callers never post-filter results.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID, uuid4

import numpy as np
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge.models import (
    Chunk,
    ChunkEmbedding,
    Document,
    FaqEntry,
    Role,
    VectorizationStatus,
)
from knowledge.services.embeddings import Embedder
from knowledge.services.extraction import ChunkSpec
from knowledge.services.permissions import readable_by

logger = logging.getLogger(__name__)

STOPWORDS = frozenset(
    """a an and are as at be by can do does for from how i in is it of on or our
    the to was we what when where which who why will with you your""".split()
)

TAG_BONUS = 0.05
CATEGORY_BONUS = 0.05


@dataclass
class RequesterContext:
    """Who is asking; the corpus only needs the role tier."""

    role: Role
    user_id: str | None = None
    for_ai_context: bool = True


@dataclass
class FaqMatch:
    entry: FaqEntry
    score: float


@dataclass
class ChunkMatch:
    chunk_id: UUID
    document_id: UUID
    document_name: str
    chunk_index: int
    text: str
    score: float


@dataclass
class CuratedInput:
    question: str
    answer: str
    category: str = "general"
    tags: list[str] = field(default_factory=list)
    priority: int = 0
    is_active: bool = True


# ============================================================================
# Curated Q&A
# ============================================================================


def tokenize(text: str) -> list[str]:
    return [t for t in re.findall(r"[a-z0-9]+", text.lower()) if t not in STOPWORDS]


def normalize_question(question: str) -> str:
    """Canonical form used to make curated entries idempotent."""
    return " ".join(re.findall(r"[a-z0-9]+", question.lower()))


def score_curated(query: str, entry: FaqEntry) -> float:
    """
    Dice overlap between the query's and the question's content words,
    plus a small bonus for each tag and the category appearing in the query.
    An identical normalized question always scores 1.0.
    """
    if normalize_question(query) == entry.question_key:
        return 1.0

    query_tokens = set(tokenize(query))
    question_tokens = set(tokenize(entry.question))
    if not query_tokens or not question_tokens:
        return 0.0

    overlap = len(query_tokens & question_tokens)
    score = 2 * overlap / (len(query_tokens) + len(question_tokens))
    if overlap == 0:
        return 0.0

    for tag in entry.tags or []:
        if set(tokenize(tag)) & query_tokens:
            score += TAG_BONUS
    if set(tokenize(entry.category)) & query_tokens:
        score += CATEGORY_BONUS

    return min(score, 1.0)


async def query_curated(
    session: AsyncSession,
    text: str,
    limit: int = 5,
) -> list[FaqMatch]:
    """Score active curated entries against the query, best first."""
    result = await session.execute(
        select(FaqEntry).where(FaqEntry.is_active == True)  # noqa: E712
    )
    matches = []
    for entry in result.scalars().all():
        score = score_curated(text, entry)
        if score > 0:
            matches.append(FaqMatch(entry=entry, score=score))

    matches.sort(
        key=lambda m: (m.score, m.entry.priority, m.entry.updated_at or datetime.min),
        reverse=True,
    )
    return matches[:limit]


async def find_curated(
    session: AsyncSession,
    question: str,
    category: str | None = None,
) -> FaqEntry | None:
    """Look up an entry by normalized question, optionally within one category."""
    query = select(FaqEntry).where(FaqEntry.question_key == normalize_question(question))
    if category is not None:
        query = query.where(FaqEntry.category == category)
    query = query.order_by(FaqEntry.updated_at.desc()).limit(1)
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def upsert_curated(
    session: AsyncSession,
    entry: CuratedInput,
    created_by: str,
    source_correction_id: UUID | None = None,
) -> FaqEntry:
    """
    Insert or update the curated entry for (category, normalized question).

    Calling twice with the same question and category leaves one entry
    holding the latest answer, tags, priority and active flag.
    """
    existing = await find_curated(session, entry.question, entry.category)
    now = datetime.utcnow()

    if existing:
        existing.question = entry.question
        existing.answer = entry.answer
        existing.tags = list(entry.tags)
        existing.priority = entry.priority
        existing.is_active = entry.is_active
        existing.updated_at = now
        if source_correction_id:
            existing.source_correction_id = source_correction_id
        await session.flush()
        logger.info(f"Updated curated entry {existing.id} ({entry.category})")
        return existing

    faq = FaqEntry(
        id=uuid4(),
        question=entry.question,
        question_key=normalize_question(entry.question),
        answer=entry.answer,
        category=entry.category,
        tags=list(entry.tags),
        priority=entry.priority,
        is_active=entry.is_active,
        created_by=created_by,
        source_correction_id=source_correction_id,
        created_at=now,
        updated_at=now,
    )
    session.add(faq)
    await session.flush()
    logger.info(f"Created curated entry {faq.id} ({entry.category})")
    return faq


# ============================================================================
# Document chunks
# ============================================================================


def cosine_similarity(a, b) -> float:
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    denom = np.linalg.norm(a) * np.linalg.norm(b)
    if denom == 0:
        return 0.0
    return float(np.dot(a, b) / denom)


def _readable_chunks(requester: RequesterContext):
    return (
        select(Chunk, Document, ChunkEmbedding.embedding)
        .join(ChunkEmbedding, ChunkEmbedding.chunk_id == Chunk.id)
        .join(Document, Document.id == Chunk.document_id)
        .where(
            Document.vectorization_status == VectorizationStatus.VECTORIZED,
            readable_by(requester.role, requester.for_ai_context),
        )
    )


async def query_documents(
    session: AsyncSession,
    text: str,
    requester: RequesterContext,
    embedder: Embedder,
    limit: int = 5,
) -> list[ChunkMatch]:
    """Embed the query text and rank chunks against it."""
    [vector] = await embedder.embed([text])
    return await rank_chunks(session, vector, requester, limit=limit)


async def rank_chunks(
    session: AsyncSession,
    vector: list[float],
    requester: RequesterContext,
    limit: int = 5,
) -> list[ChunkMatch]:
    """
    Rank readable, vectorized chunks by cosine similarity to a query vector.

    On PostgreSQL the ranking runs in pgvector; other backends compute the
    similarity over the already permission-filtered rows.
    """
    query = _readable_chunks(requester)

    if session.bind.dialect.name == "postgresql":
        distance = ChunkEmbedding.embedding.cosine_distance(vector)
        result = await session.execute(
            query.add_columns(distance.label("distance")).order_by(distance).limit(limit)
        )
        rows = [(chunk, doc, 1.0 - float(dist)) for chunk, doc, _, dist in result.all()]
    else:
        result = await session.execute(query)
        rows = [
            (chunk, doc, cosine_similarity(vector, embedding))
            for chunk, doc, embedding in result.all()
        ]
        rows.sort(key=lambda r: r[2], reverse=True)
        rows = rows[:limit]

    return [
        ChunkMatch(
            chunk_id=chunk.id,
            document_id=doc.id,
            document_name=doc.display_name,
            chunk_index=chunk.chunk_index,
            text=chunk.text,
            score=score,
        )
        for chunk, doc, score in rows
    ]


async def delete_chunks(session: AsyncSession, document_id: UUID) -> None:
    chunk_ids = select(Chunk.id).where(Chunk.document_id == document_id)
    await session.execute(delete(ChunkEmbedding).where(ChunkEmbedding.chunk_id.in_(chunk_ids)))
    await session.execute(delete(Chunk).where(Chunk.document_id == document_id))


async def replace_chunks(
    session: AsyncSession,
    document: Document,
    chunks: list[ChunkSpec],
    vectors: list[list[float]],
) -> list[Chunk]:
    """Swap a document's chunks and embeddings for a freshly computed set."""
    if len(chunks) != len(vectors):
        raise ValueError(f"Got {len(vectors)} vectors for {len(chunks)} chunks")

    await delete_chunks(session, document.id)

    rows = []
    for spec, vector in zip(chunks, vectors, strict=True):
        chunk = Chunk(
            id=uuid4(),
            document_id=document.id,
            chunk_index=spec.index,
            text=spec.text,
            char_start=spec.char_start,
            char_end=spec.char_end,
        )
        session.add(chunk)
        session.add(ChunkEmbedding(chunk_id=chunk.id, embedding=list(vector)))
        rows.append(chunk)

    await session.flush()
    logger.info(f"Indexed {len(rows)} chunks for document {document.id}")
    return rows
