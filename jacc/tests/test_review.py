"""Tests for chat review, corrections and promotion to curated answers."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from knowledge.errors import ChatNotFound, CorrectionNotFound, InvalidReviewInput
from knowledge.models import (
    Chat,
    ChatReview,
    FaqEntry,
    Message,
    Provenance,
    ReviewStatus,
)
from knowledge.services.corpus import CuratedInput, upsert_curated
from knowledge.services.review import (
    add_correction,
    get_review_detail,
    list_reviews,
    promote_to_curated,
    question_for_message,
    record_review,
    review_stats,
)

QUESTION = "What is the qualified rate for Clover?"


async def make_chat(session, exchanges: list[tuple[str, str]], user_id: str = "agent-1"):
    """A chat with alternating user/assistant messages; returns (chat, assistant messages)."""
    chat = Chat(id=uuid4(), user_id=user_id, title="Rates")
    session.add(chat)
    start = datetime.utcnow() - timedelta(minutes=10)
    replies = []
    for i, (question, reply) in enumerate(exchanges):
        session.add(
            Message(
                id=uuid4(),
                chat_id=chat.id,
                role="user",
                content=question,
                created_at=start + timedelta(seconds=2 * i),
            )
        )
        message = Message(
            id=uuid4(),
            chat_id=chat.id,
            role="assistant",
            content=reply,
            provenance=Provenance.WEB,
            created_at=start + timedelta(seconds=2 * i + 1),
        )
        session.add(message)
        replies.append(message)
    await session.commit()
    return chat, replies


# ── review records ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_review_is_upserted_per_chat(session):
    chat, _ = await make_chat(session, [(QUESTION, "About 2%")])

    status = ReviewStatus.NEEDS_CORRECTION
    first = await record_review(session, chat.id, status, "wrong", "admin-1")
    second = await record_review(session, chat.id, ReviewStatus.APPROVED, None, "admin-2")

    assert second.id == first.id
    assert second.review_status == ReviewStatus.APPROVED
    assert second.reviewed_by == "admin-2"
    assert second.total_messages == 2
    count = await session.execute(select(func.count(ChatReview.id)))
    assert count.scalar() == 1


@pytest.mark.asyncio
async def test_review_snapshots_correction_count(session):
    chat, replies = await make_chat(session, [(QUESTION, "About 2%"), ("And TSYS?", "Same")])
    await add_correction(session, chat.id, replies[0].id, "1.69% + 10c", "admin-1")

    review = await record_review(session, chat.id, ReviewStatus.NEEDS_CORRECTION, None, "admin-1")
    assert review.corrections_made == 1
    assert review.total_messages == 4

    # Snapshot, not a live count
    await add_correction(session, chat.id, replies[1].id, "TSYS is 1.79%", "admin-1")
    await session.refresh(review)
    assert review.corrections_made == 1


@pytest.mark.asyncio
async def test_review_unknown_chat(session):
    with pytest.raises(ChatNotFound):
        await record_review(session, uuid4(), ReviewStatus.APPROVED, None, "admin-1")


# ── corrections ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_correction_keeps_original_content(session):
    chat, replies = await make_chat(session, [(QUESTION, "About 2%")])
    correction = await add_correction(session, chat.id, replies[0].id, "  1.69% + 10c ", "admin-1")

    assert correction.original_content == "About 2%"
    assert correction.corrected_content == "1.69% + 10c"
    message = await session.get(Message, replies[0].id)
    assert message.content == "About 2%"


@pytest.mark.asyncio
async def test_correction_validation(session):
    chat, replies = await make_chat(session, [(QUESTION, "About 2%")])
    _, other_replies = await make_chat(session, [("Other?", "Other")])

    with pytest.raises(InvalidReviewInput):
        await add_correction(session, chat.id, replies[0].id, "   ", "admin-1")
    with pytest.raises(InvalidReviewInput):
        await add_correction(session, chat.id, other_replies[0].id, "fix", "admin-1")
    with pytest.raises(ChatNotFound):
        await add_correction(session, uuid4(), replies[0].id, "fix", "admin-1")


@pytest.mark.asyncio
async def test_question_for_message(session):
    chat, replies = await make_chat(session, [(QUESTION, "About 2%"), ("And TSYS?", "Same")])
    assert await question_for_message(session, replies[0]) == QUESTION
    assert await question_for_message(session, replies[1]) == "And TSYS?"


# ── promotion ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_promote_creates_curated_entry(session):
    chat, replies = await make_chat(session, [(QUESTION, "About 2%")])
    correction = await add_correction(session, chat.id, replies[0].id, "1.69% + 10c", "admin-1")

    entry = await promote_to_curated(session, correction.id, "admin-1", tags=["clover"])

    assert entry.question == QUESTION
    assert entry.answer == "1.69% + 10c"
    assert entry.category == "general"
    assert entry.tags == ["clover"]
    assert entry.is_active is True
    assert entry.source_correction_id == correction.id
    await session.refresh(correction)
    assert correction.promoted_faq_id == entry.id


@pytest.mark.asyncio
async def test_scenario_promotion_updates_existing_entry(session):
    existing = await upsert_curated(
        session,
        CuratedInput(question=QUESTION, answer="1.5%", category="pricing", priority=7),
        "admin-1",
    )
    await session.commit()

    chat, replies = await make_chat(session, [("what is the qualified rate for clover", "1.5%")])
    correction = await add_correction(session, chat.id, replies[0].id, "1.69% + 10c", "admin-1")
    entry = await promote_to_curated(session, correction.id, "admin-2")

    assert entry.id == existing.id
    assert entry.category == "pricing"
    assert entry.priority == 7
    rows = (await session.execute(select(FaqEntry))).scalars().all()
    assert len(rows) == 1
    assert rows[0].answer == "1.69% + 10c"


@pytest.mark.asyncio
async def test_promote_into_new_category_moves_existing_entry(session):
    existing = await upsert_curated(
        session,
        CuratedInput(question=QUESTION, answer="old", category="pricing", tags=["clover"]),
        "admin-1",
    )
    await session.commit()

    chat, replies = await make_chat(session, [(QUESTION, "old")])
    correction = await add_correction(session, chat.id, replies[0].id, "1.5%", "admin-1")
    entry = await promote_to_curated(session, correction.id, "admin-1", category="rates")

    assert entry.id == existing.id
    assert entry.tags == ["clover"]
    rows = (await session.execute(select(FaqEntry))).scalars().all()
    assert [(row.category, row.answer) for row in rows] == [("rates", "1.5%")]
    assert rows[0].source_correction_id == correction.id


@pytest.mark.asyncio
async def test_promote_twice_keeps_one_entry(session):
    chat, replies = await make_chat(session, [(QUESTION, "About 2%")])
    first = await add_correction(session, chat.id, replies[0].id, "1.69%", "admin-1")
    second = await add_correction(session, chat.id, replies[0].id, "1.69% + 10c", "admin-1")

    await promote_to_curated(session, first.id, "admin-1")
    entry = await promote_to_curated(session, second.id, "admin-1")

    assert entry.answer == "1.69% + 10c"
    count = await session.execute(select(func.count(FaqEntry.id)))
    assert count.scalar() == 1


@pytest.mark.asyncio
async def test_promote_unknown_correction(session):
    with pytest.raises(CorrectionNotFound):
        await promote_to_curated(session, uuid4(), "admin-1")


@pytest.mark.asyncio
async def test_promote_without_preceding_question(session):
    chat = Chat(id=uuid4(), user_id="agent-1", title="Greeting")
    session.add(chat)
    message = Message(id=uuid4(), chat_id=chat.id, role="assistant", content="Hi!")
    session.add(message)
    await session.commit()
    correction = await add_correction(session, chat.id, message.id, "Hello!", "admin-1")

    with pytest.raises(InvalidReviewInput):
        await promote_to_curated(session, correction.id, "admin-1")


# ── listing & stats ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_stats_and_listing(session):
    approved, _ = await make_chat(session, [(QUESTION, "1.69%")])
    flagged, replies = await make_chat(session, [("And TSYS?", "2%")])
    untouched, _ = await make_chat(session, [("Hi", "Hello")])

    await record_review(session, approved.id, ReviewStatus.APPROVED, None, "admin-1")
    await record_review(session, flagged.id, ReviewStatus.NEEDS_CORRECTION, "check", "admin-1")
    await add_correction(session, flagged.id, replies[0].id, "1.79%", "admin-1")

    stats = await review_stats(session)
    assert stats == {
        "pending": 1,
        "approved": 1,
        "needs_correction": 1,
        "total_corrections": 1,
        "total_chats": 3,
    }

    pending = await list_reviews(session, ReviewStatus.PENDING)
    assert [s.chat.id for s in pending] == [untouched.id]
    assert pending[0].review is None
    assert pending[0].message_count == 2

    flagged_list = await list_reviews(session, ReviewStatus.NEEDS_CORRECTION)
    assert [s.chat.id for s in flagged_list] == [flagged.id]

    assert len(await list_reviews(session)) == 3


@pytest.mark.asyncio
async def test_review_detail(session):
    chat, replies = await make_chat(session, [(QUESTION, "About 2%")])
    await add_correction(session, chat.id, replies[0].id, "1.69%", "admin-1")

    detail = await get_review_detail(session, chat.id)
    assert [m.role for m in detail.messages] == ["user", "assistant"]
    assert detail.review is None
    assert [c.corrected_content for c in detail.corrections] == ["1.69%"]
    assert await get_review_detail(session, uuid4()) is None

