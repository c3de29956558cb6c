"""Tests for importing the tab-separated questions sheet."""

import pytest
from sqlalchemy import select

from knowledge.models import FaqEntry
from knowledge.services.faq_import import categorize, import_faq_rows, parse_faq_rows

SHEET = "\n".join(
    [
        "REP Questions\tAnswers\tDate",
        "What POS systems does TSYS support?\tClover and Genius.\t2024-05-01",
        "How do I contact customer support?\tCall 800-555-0100.",
        "What is the monthly gateway fee?\t$10 per month via Authorize.net.",
        "",
        "Missing answer row",
        "\tNo question here",
        "Which terminal is best for salons?\tThe Clover Flex.",
    ]
)


def test_categorize_first_rule_wins():
    assert categorize("What POS does Shift4 offer?", "")[0] == "pos"
    assert categorize("What is the fee for a gateway?", "")[0] == "pricing"
    assert categorize("Hello?", "") == ("general", [])


def test_categorize_adds_processor_tags():
    category, tags = categorize("Who supports Clearent?", "Contact TSYS for help.")
    assert category == "support"
    assert tags == ["support", "contact", "tsys", "clearent"]


def test_parse_rows_reports_skipped_lines():
    entries, skipped = parse_faq_rows(SHEET)
    assert [e.category for e in entries] == ["pos", "support", "pricing", "hardware"]
    assert [e.priority for e in entries] == [2, 3, 1, 1]
    assert skipped == [6, 7]
    assert entries[0].answer == "Clover and Genius."


@pytest.mark.asyncio
async def test_import_is_repeatable(session):
    report = await import_faq_rows(session, SHEET, "admin-1")
    assert report.imported == 4

    updated = SHEET.replace("Call 800-555-0100.", "Call 800-555-0199.")
    await import_faq_rows(session, updated, "admin-1")

    rows = (await session.execute(select(FaqEntry))).scalars().all()
    assert len(rows) == 4
    support = next(r for r in rows if r.category == "support")
    assert support.answer == "Call 800-555-0199."
    assert all(r.created_by == "admin-1" for r in rows)
