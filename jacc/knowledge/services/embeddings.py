import logging
from typing import Protocol

from knowledge.config import settings

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Turns texts into vectors. Order of the output matches the input."""

    async def embed(self, texts: list[str]) -> list[list[float]]: ...


class OpenAIEmbedder:
    """Embedder backed by the OpenAI embeddings endpoint."""

    def __init__(self, api_key: str | None = None, model: str | None = None):
        from openai import AsyncOpenAI

        self.client = AsyncOpenAI(api_key=api_key or settings.openai_api_key)
        self.model = model or settings.embedding_model

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        response = await self.client.embeddings.create(model=self.model, input=texts)
        # The API may reorder; index carries the original position
        data = sorted(response.data, key=lambda d: d.index)
        return [d.embedding for d in data]


def get_embedder() -> Embedder | None:
    """The configured embedder, or None when no API key is set."""
    if not settings.openai_api_key:
        logger.warning("No OpenAI API key configured, vector search is disabled")
        return None
    return OpenAIEmbedder()
