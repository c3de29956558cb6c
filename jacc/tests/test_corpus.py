"""Tests for the corpus index: curated Q&A scoring/upsert and chunk search."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from knowledge.models import Chunk, ChunkEmbedding, FaqEntry, Role, VectorizationStatus
from knowledge.services.corpus import (
    CuratedInput,
    RequesterContext,
    cosine_similarity,
    delete_chunks,
    normalize_question,
    query_curated,
    query_documents,
    replace_chunks,
    score_curated,
    tokenize,
    upsert_curated,
)
from knowledge.services.extraction import chunk_text

CLOVER_QUESTION = "What is the qualified rate for Clover?"


def entry(question: str, category: str = "general", tags=None) -> FaqEntry:
    return FaqEntry(
        question=question,
        question_key=normalize_question(question),
        answer="x",
        category=category,
        tags=tags or [],
    )


# ── curated scoring ──────────────────────────────────────────────


def test_normalize_question_ignores_case_and_punctuation():
    assert normalize_question("What is the Qualified Rate for CLOVER??") == normalize_question(
        CLOVER_QUESTION
    )


def test_tokenize_drops_stopwords():
    assert tokenize("What is the qualified rate for Clover?") == ["qualified", "rate", "clover"]


def test_exact_question_scores_one():
    assert score_curated("what is the qualified rate for clover", entry(CLOVER_QUESTION)) == 1.0


def test_unrelated_question_scores_zero():
    assert score_curated("how do I reset a terminal", entry(CLOVER_QUESTION)) == 0.0


def test_partial_overlap_scores_between():
    score = score_curated("clover rate", entry(CLOVER_QUESTION))
    assert 0.6 < score < 1.0


def test_tag_and_category_bonus():
    plain = score_curated("clover pricing", entry("Clover monthly fee"))
    boosted = score_curated(
        "clover pricing", entry("Clover monthly fee", category="pricing", tags=["clover"])
    )
    assert boosted == pytest.approx(plain + 0.1)


@pytest.mark.asyncio
async def test_query_curated_orders_and_skips_inactive(session):
    await upsert_curated(session, CuratedInput(question=CLOVER_QUESTION, answer="1.69%"), "admin")
    await upsert_curated(
        session,
        CuratedInput(question="Clover rate for restaurants", answer="1.79%", priority=5),
        "admin",
    )
    await upsert_curated(
        session,
        CuratedInput(question="Qualified rate Clover", answer="old", is_active=False),
        "admin",
    )
    await session.commit()

    matches = await query_curated(session, CLOVER_QUESTION)
    assert [m.entry.answer for m in matches] == ["1.69%", "1.79%"]
    assert matches[0].score == 1.0


@pytest.mark.asyncio
async def test_query_curated_breaks_ties_by_priority_then_recency(session):
    now = datetime.utcnow()
    low = await upsert_curated(
        session, CuratedInput(question="clover fee", answer="low", category="a"), "admin"
    )
    high = await upsert_curated(
        session,
        CuratedInput(question="clover fee", answer="high", category="b", priority=3),
        "admin",
    )
    newer = await upsert_curated(
        session, CuratedInput(question="clover fee", answer="newer", category="c"), "admin"
    )
    low.updated_at = now - timedelta(days=1)
    newer.updated_at = now
    await session.commit()

    matches = await query_curated(session, "clover fee")
    assert [m.entry.id for m in matches] == [high.id, newer.id, low.id]


# ── curated upsert ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_upsert_is_idempotent_per_question(session):
    first = await upsert_curated(
        session, CuratedInput(question=CLOVER_QUESTION, answer="1.69%", tags=["clover"]), "admin"
    )
    second = await upsert_curated(
        session,
        CuratedInput(question="what is the QUALIFIED rate for clover", answer="1.59%", priority=4),
        "admin",
    )
    await session.commit()

    assert second.id == first.id
    rows = (await session.execute(select(FaqEntry))).scalars().all()
    assert len(rows) == 1
    assert rows[0].answer == "1.59%"
    assert rows[0].priority == 4
    assert rows[0].tags == []


@pytest.mark.asyncio
async def test_same_question_in_other_category_is_separate(session):
    await upsert_curated(session, CuratedInput(question=CLOVER_QUESTION, answer="a"), "admin")
    await upsert_curated(
        session, CuratedInput(question=CLOVER_QUESTION, answer="b", category="pricing"), "admin"
    )
    await session.commit()
    result = await session.execute(select(func.count(FaqEntry.id)))
    assert result.scalar() == 2


# ── document chunks ──────────────────────────────────────────────


def test_cosine_similarity():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([0, 0], [1, 1]) == 0.0


@pytest.mark.asyncio
async def test_query_documents_ranks_by_similarity(session, embedder, make_document):
    clover = await make_document(
        session, "clover.txt", "The qualified rate for Clover merchants is 1.69%.", embedder
    )
    await make_document(session, "terminals.txt", "Terminal returns take ten days.", embedder)

    matches = await query_documents(
        session, CLOVER_QUESTION, RequesterContext(role=Role.AGENT), embedder
    )
    assert matches[0].document_id == clover.id
    assert matches[0].score == pytest.approx(1.0)
    assert matches[0].document_name == "clover"
    assert matches[-1].score < 0.1


@pytest.mark.asyncio
async def test_query_documents_never_returns_unreadable(session, embedder, make_document):
    text = "The qualified rate for Clover merchants is 1.69%."
    await make_document(session, "admin.txt", text, embedder, permissions={"admin_only": True})
    managers_only = {"view_all": False, "agent_access": False}
    await make_document(session, "managers.txt", text, embedder, permissions=managers_only)
    await make_document(
        session, "not-training.txt", text, embedder, permissions={"training_data": False}
    )
    public = await make_document(session, "public.txt", text, embedder)

    async def visible(role: Role) -> set[str]:
        matches = await query_documents(
            session, CLOVER_QUESTION, RequesterContext(role=role), embedder, limit=10
        )
        return {m.document_name for m in matches}

    assert await visible(Role.AGENT) == {"public"}
    assert await visible(Role.MANAGER) == {"public", "managers"}
    assert await visible(Role.ADMIN) == {"public", "managers", "admin"}
    assert public.vectorization_status == VectorizationStatus.VECTORIZED


@pytest.mark.asyncio
async def test_unvectorized_documents_not_searched(session, embedder, make_document):
    document = await make_document(session, "clover.txt", "Clover qualified rate.", embedder)
    document.vectorization_status = VectorizationStatus.PENDING
    await session.commit()

    matches = await query_documents(
        session, CLOVER_QUESTION, RequesterContext(role=Role.ADMIN), embedder
    )
    assert matches == []


@pytest.mark.asyncio
async def test_replace_chunks_swaps_index_entries(session, embedder, make_document):
    document = await make_document(session, "doc.txt", "First version. " * 200, embedder)
    before = (await session.execute(select(func.count(Chunk.id)))).scalar()
    assert before > 1

    chunks = chunk_text("Second version.")
    await replace_chunks(session, document, chunks, await embedder.embed(["Second version."]))
    await session.commit()

    rows = (await session.execute(select(Chunk))).scalars().all()
    assert [c.text for c in rows] == ["Second version."]
    assert (await session.execute(select(func.count()).select_from(ChunkEmbedding))).scalar() == 1

    with pytest.raises(ValueError):
        await replace_chunks(session, document, chunks, [])

    await delete_chunks(session, document.id)
    await session.commit()
    assert (await session.execute(select(func.count(Chunk.id)))).scalar() == 0
