"""Retrieval observability.

Every answer the cascade produces is recorded as an Interaction, so admins
can audit where answers came from and review web-sourced ones as candidate
corpus additions.
"""

import logging
import time
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge.models import Interaction, Provenance, Role

logger = logging.getLogger(__name__)


class InteractionTracker:
    """
    Context manager for tracking one cascade run.

    Usage:
        async with InteractionTracker(session, query, role, user_id=user_id) as tracker:
            answer = await run_tiers(query)
            tracker.set_answer(answer.provenance, answer.text, citations=...)
    """

    def __init__(
        self,
        session: AsyncSession,
        query: str,
        role: Role,
        user_id: str | None = None,
        chat_id: UUID | None = None,
    ):
        self.session = session
        self.query = query
        self.role = role
        self.user_id = user_id
        self.chat_id = chat_id

        self.interaction_id = uuid4()
        self.provenance = Provenance.NONE
        self.answer: str | None = None
        self.citations: list[dict[str, Any]] = []
        self.confidence: float | None = None
        self.notice: str | None = None
        self._start_time: float | None = None

    def set_answer(
        self,
        provenance: Provenance,
        answer: str | None,
        citations: list[dict[str, Any]] | None = None,
        confidence: float | None = None,
        notice: str | None = None,
    ) -> None:
        self.provenance = provenance
        self.answer = answer
        self.citations = citations or []
        self.confidence = confidence
        self.notice = notice

    async def __aenter__(self) -> "InteractionTracker":
        self._start_time = time.perf_counter()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            # Nothing meaningful to record for a failed run
            return

        latency_ms = None
        if self._start_time:
            latency_ms = int((time.perf_counter() - self._start_time) * 1000)

        interaction = Interaction(
            id=self.interaction_id,
            user_id=self.user_id,
            role=self.role,
            chat_id=self.chat_id,
            query=self.query,
            provenance=self.provenance,
            answer=self.answer,
            citations=self.citations,
            confidence=self.confidence,
            notice=self.notice,
            latency_ms=latency_ms,
            admin_reviewed=self.provenance != Provenance.WEB,
        )
        self.session.add(interaction)
        await self.session.commit()

        logger.info(
            f"Recorded interaction {self.interaction_id}: "
            f"provenance={self.provenance.value}, citations={len(self.citations)}, "
            f"latency={latency_ms}ms"
        )


async def list_interactions(
    session: AsyncSession,
    provenance: Provenance | None = None,
    pending_review: bool | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Interaction]:
    """List interactions with optional filtering, newest first."""
    query = select(Interaction)

    if provenance:
        query = query.where(Interaction.provenance == provenance)
    if pending_review is not None:
        query = query.where(Interaction.admin_reviewed == (not pending_review))

    query = query.order_by(Interaction.created_at.desc()).offset(offset).limit(limit)

    result = await session.execute(query)
    return list(result.scalars().all())


async def mark_interaction_reviewed(
    session: AsyncSession, interaction_id: UUID
) -> Interaction | None:
    interaction = await session.get(Interaction, interaction_id)
    if not interaction:
        return None
    interaction.admin_reviewed = True
    await session.commit()
    return interaction


async def get_interaction_stats(session: AsyncSession) -> dict[str, Any]:
    """Answer counts per provenance plus average latency."""
    result = await session.execute(
        select(Interaction.provenance, func.count(Interaction.id)).group_by(
            Interaction.provenance
        )
    )
    by_provenance = {p.value: 0 for p in Provenance}
    for provenance, count in result.all():
        by_provenance[provenance.value] = count

    result = await session.execute(select(func.avg(Interaction.latency_ms)))
    avg_latency = result.scalar()

    result = await session.execute(
        select(func.count(Interaction.id)).where(
            Interaction.admin_reviewed == False  # noqa: E712
        )
    )
    pending_review = result.scalar() or 0

    return {
        "total": sum(by_provenance.values()),
        "by_provenance": by_provenance,
        "pending_review": pending_review,
        "avg_latency_ms": float(avg_latency) if avg_latency is not None else None,
    }
