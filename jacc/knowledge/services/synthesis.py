"""Answer synthesis from retrieved document chunks."""

import logging
import re

from knowledge.config import settings
from knowledge.services.corpus import ChunkMatch, tokenize

logger = logging.getLogger(__name__)

MAX_EXTRACT_SENTENCES = 3


def extractive_answer(query: str, matches: list[ChunkMatch]) -> str:
    """
    Pick the sentences from the matched chunks that share the most words
    with the query, keeping document order within each chunk.
    """
    query_tokens = set(tokenize(query))
    scored: list[tuple[int, float, int, str]] = []

    for rank, match in enumerate(matches):
        sentences = re.split(r"(?<=[.!?])\s+|\n+", match.text)
        for position, sentence in enumerate(sentences):
            sentence = sentence.strip()
            if not sentence:
                continue
            overlap = len(query_tokens & set(tokenize(sentence)))
            if overlap:
                scored.append((overlap, match.score, -(rank * 1000 + position), sentence))

    if not scored:
        return matches[0].text.strip()

    best = sorted(scored, reverse=True)[:MAX_EXTRACT_SENTENCES]
    best.sort(key=lambda s: s[2], reverse=True)
    return " ".join(s[3] for s in best)


async def llm_answer(query: str, matches: list[ChunkMatch]) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=settings.openai_api_key)
    context = "\n\n---\n\n".join(f"[{m.document_name}]\n{m.text}" for m in matches)

    prompt = (
        "You are a sales assistant for merchant-services agents, answering from "
        "internal documents.\n\n"
        f"Question: {query}\n\n"
        f"Relevant document excerpts:\n{context}\n\n"
        "Based ONLY on the excerpts above, answer the question. If they do not "
        "contain enough information, say so. Name the documents you relied on.\n\n"
        "Answer:"
    )

    response = await client.chat.completions.create(
        model=settings.chat_model,
        messages=[{"role": "user", "content": prompt}],
        max_tokens=500,
        temperature=0.3,
    )
    return response.choices[0].message.content.strip()


async def synthesize_answer(query: str, matches: list[ChunkMatch]) -> str:
    """LLM answer when configured, otherwise (or on LLM failure) an extract."""
    if settings.openai_api_key:
        try:
            return await llm_answer(query, matches)
        except Exception as e:
            logger.exception(f"LLM synthesis failed, falling back to extract: {e}")
    return extractive_answer(query, matches)
