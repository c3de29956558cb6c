"""Import of the REP questions sheet into the curated Q&A set.

The sheet is tab-separated: question, answer, then optional date columns.
The first line is a header.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from knowledge.services.corpus import CuratedInput, upsert_curated

logger = logging.getLogger(__name__)

# First matching rule wins
CATEGORY_RULES: list[tuple[str, tuple[str, ...], list[str]]] = [
    ("pos", ("pos", "point of sale"), ["pos", "systems"]),
    ("integration", ("integrate", "integration"), ["integration", "software"]),
    ("support", ("support", "customer", "contact"), ["support", "contact"]),
    ("pricing", ("fee", "cost", "price"), ["pricing", "fees"]),
    ("gateway", ("gateway", "payment"), ["gateway", "payment"]),
    ("hardware", ("terminal", "hardware"), ["hardware", "terminal"]),
    ("industry", ("restaurant", "retail", "salon"), ["industry", "vertical"]),
]

PROCESSORS = ["tsys", "clearent", "trx", "micamp", "shift4", "quantic", "hubwallet"]

CATEGORY_PRIORITY = {"support": 3, "pos": 2}


@dataclass
class ImportReport:
    imported: int = 0
    skipped: list[int] = field(default_factory=list)  # 1-based line numbers


def categorize(question: str, answer: str) -> tuple[str, list[str]]:
    lowered = question.lower()
    category, tags = "general", []
    for name, keywords, rule_tags in CATEGORY_RULES:
        if any(k in lowered for k in keywords):
            category, tags = name, list(rule_tags)
            break

    answer_lowered = answer.lower()
    for processor in PROCESSORS:
        if processor in lowered or processor in answer_lowered:
            tags.append(processor)
    return category, tags


def parse_faq_rows(text: str) -> tuple[list[CuratedInput], list[int]]:
    """Parse the sheet; returns entries and the line numbers that were skipped."""
    entries: list[CuratedInput] = []
    skipped: list[int] = []

    for line_no, line in enumerate(text.splitlines(), start=1):
        if line_no == 1 or not line.strip():
            continue
        parts = [p.strip() for p in line.split("\t")]
        if len(parts) < 2 or not parts[0] or not parts[1] or parts[0] == "REP Questions":
            skipped.append(line_no)
            continue

        question, answer = parts[0], parts[1]
        category, tags = categorize(question, answer)
        entries.append(
            CuratedInput(
                question=question,
                answer=answer,
                category=category,
                tags=tags,
                priority=CATEGORY_PRIORITY.get(category, 1),
            )
        )
    return entries, skipped


async def import_faq_rows(session: AsyncSession, text: str, imported_by: str) -> ImportReport:
    """Upsert every parsed row; re-importing the same sheet is a no-op update."""
    entries, skipped = parse_faq_rows(text)
    for entry in entries:
        await upsert_curated(session, entry, imported_by)
    await session.commit()

    logger.info(f"Imported {len(entries)} curated entries, skipped {len(skipped)} lines")
    return ImportReport(imported=len(entries), skipped=skipped)
