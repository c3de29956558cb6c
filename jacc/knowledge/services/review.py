"""Admin review of chat transcripts and promotion of corrections.

The review record is a per-chat upsert; corrections are append-only and
independent of the review status. Promotion turns a correction into a
curated Q&A entry, idempotently per question.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge.errors import ChatNotFound, CorrectionNotFound, InvalidReviewInput
from knowledge.models import (
    Chat,
    ChatReview,
    FaqEntry,
    Message,
    MessageCorrection,
    ReviewStatus,
)
from knowledge.services.corpus import CuratedInput, find_curated, upsert_curated

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "general"


@dataclass
class ReviewSummary:
    chat: Chat
    review: ChatReview | None
    message_count: int


@dataclass
class ReviewDetail:
    chat: Chat
    messages: list[Message]
    review: ChatReview | None
    corrections: list[MessageCorrection] = field(default_factory=list)


async def _count(session: AsyncSession, model, *criteria) -> int:
    result = await session.execute(select(func.count()).select_from(model).where(*criteria))
    return result.scalar() or 0


async def _get_chat(session: AsyncSession, chat_id: UUID) -> Chat:
    chat = await session.get(Chat, chat_id)
    if not chat:
        raise ChatNotFound(f"Chat {chat_id} not found")
    return chat


async def record_review(
    session: AsyncSession,
    chat_id: UUID,
    review_status: ReviewStatus,
    notes: str | None,
    reviewer_id: str,
) -> ChatReview:
    """Create or overwrite the chat's review, snapshotting its counts."""
    await _get_chat(session, chat_id)
    now = datetime.utcnow()

    corrections = await _count(session, MessageCorrection, MessageCorrection.chat_id == chat_id)
    messages = await _count(session, Message, Message.chat_id == chat_id)

    result = await session.execute(select(ChatReview).where(ChatReview.chat_id == chat_id))
    review = result.scalar_one_or_none()

    if review:
        review.review_status = review_status
        review.review_notes = notes
        review.reviewed_by = reviewer_id
        review.updated_at = now
    else:
        review = ChatReview(
            id=uuid4(),
            chat_id=chat_id,
            review_status=review_status,
            review_notes=notes,
            reviewed_by=reviewer_id,
            created_at=now,
            updated_at=now,
        )
        session.add(review)

    review.corrections_made = corrections
    review.total_messages = messages
    review.last_reviewed_at = now

    await session.commit()
    logger.info(f"Chat {chat_id} reviewed as {review_status.value} by {reviewer_id}")
    return review


async def add_correction(
    session: AsyncSession,
    chat_id: UUID,
    message_id: UUID,
    corrected_content: str,
    reviewer_id: str,
) -> MessageCorrection:
    await _get_chat(session, chat_id)

    if not corrected_content or not corrected_content.strip():
        raise InvalidReviewInput("Corrected content must not be empty")

    message = await session.get(Message, message_id)
    if not message or message.chat_id != chat_id:
        raise InvalidReviewInput(f"Message {message_id} does not belong to chat {chat_id}")

    correction = MessageCorrection(
        id=uuid4(),
        chat_id=chat_id,
        message_id=message_id,
        original_content=message.content,
        corrected_content=corrected_content.strip(),
        created_by=reviewer_id,
    )
    session.add(correction)
    await session.commit()
    logger.info(f"Correction {correction.id} recorded for message {message_id}")
    return correction


async def question_for_message(session: AsyncSession, message: Message) -> str | None:
    """The most recent user message preceding ``message`` in its chat."""
    result = await session.execute(
        select(Message)
        .where(
            Message.chat_id == message.chat_id,
            Message.role == "user",
            Message.created_at <= message.created_at,
            Message.id != message.id,
        )
        .order_by(Message.created_at.desc())
        .limit(1)
    )
    question = result.scalar_one_or_none()
    return question.content if question else None


async def promote_to_curated(
    session: AsyncSession,
    correction_id: UUID,
    promoted_by: str,
    category: str | None = None,
    tags: list[str] | None = None,
    priority: int | None = None,
) -> FaqEntry:
    """
    Turn a correction into a curated entry answering the question that
    prompted the corrected message. Re-promoting the same question updates
    the existing entry instead of adding another.
    """
    correction = await session.get(MessageCorrection, correction_id)
    if not correction:
        raise CorrectionNotFound(f"Correction {correction_id} not found")

    message = await session.get(Message, correction.message_id)
    question = await question_for_message(session, message) if message else None
    if not question:
        raise InvalidReviewInput(
            f"No user question precedes the message corrected by {correction_id}"
        )

    existing = await find_curated(session, question)
    if existing:
        existing.answer = correction.corrected_content
        if category is not None:
            existing.category = category
        if tags is not None:
            existing.tags = list(tags)
        if priority is not None:
            existing.priority = priority
        existing.is_active = True
        existing.source_correction_id = correction.id
        existing.updated_at = datetime.utcnow()
        await session.flush()
        faq = existing
    else:
        entry = CuratedInput(
            question=question,
            answer=correction.corrected_content,
            category=category or DEFAULT_CATEGORY,
            tags=tags or [],
            priority=priority or 0,
            is_active=True,
        )
        faq = await upsert_curated(
            session, entry, promoted_by, source_correction_id=correction.id
        )

    correction.promoted_faq_id = faq.id
    await session.commit()
    logger.info(f"Promoted correction {correction_id} to curated entry {faq.id}")
    return faq


async def review_stats(session: AsyncSession) -> dict[str, int]:
    total_chats = await _count(session, Chat)
    approved = await _count(session, ChatReview, ChatReview.review_status == ReviewStatus.APPROVED)
    needs_correction = await _count(
        session, ChatReview, ChatReview.review_status == ReviewStatus.NEEDS_CORRECTION
    )
    total_corrections = await _count(session, MessageCorrection)

    return {
        "pending": total_chats - approved - needs_correction,
        "approved": approved,
        "needs_correction": needs_correction,
        "total_corrections": total_corrections,
        "total_chats": total_chats,
    }


async def list_reviews(
    session: AsyncSession,
    review_status: ReviewStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[ReviewSummary]:
    """Chats with their review record (if any), most recently active first."""
    message_counts = (
        select(Message.chat_id, func.count(Message.id).label("message_count"))
        .group_by(Message.chat_id)
        .subquery()
    )
    query = (
        select(Chat, ChatReview, func.coalesce(message_counts.c.message_count, 0))
        .outerjoin(ChatReview, ChatReview.chat_id == Chat.id)
        .outerjoin(message_counts, message_counts.c.chat_id == Chat.id)
    )

    if review_status == ReviewStatus.PENDING:
        query = query.where(
            or_(ChatReview.id.is_(None), ChatReview.review_status == ReviewStatus.PENDING)
        )
    elif review_status is not None:
        query = query.where(ChatReview.review_status == review_status)

    query = query.order_by(Chat.updated_at.desc()).offset(offset).limit(limit)
    result = await session.execute(query)
    return [
        ReviewSummary(chat=chat, review=review, message_count=count)
        for chat, review, count in result.all()
    ]


async def get_review_detail(session: AsyncSession, chat_id: UUID) -> ReviewDetail | None:
    chat = await session.get(Chat, chat_id)
    if not chat:
        return None

    result = await session.execute(
        select(Message).where(Message.chat_id == chat_id).order_by(Message.created_at)
    )
    messages = list(result.scalars().all())

    result = await session.execute(select(ChatReview).where(ChatReview.chat_id == chat_id))
    review = result.scalar_one_or_none()

    result = await session.execute(
        select(MessageCorrection)
        .where(MessageCorrection.chat_id == chat_id)
        .order_by(MessageCorrection.created_at)
    )
    corrections = list(result.scalars().all())

    return ReviewDetail(chat=chat, messages=messages, review=review, corrections=corrections)
