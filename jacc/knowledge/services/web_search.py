import logging
from dataclasses import dataclass, field

import httpx

from knowledge.config import settings
from knowledge.errors import ExternalSearchUnavailable

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "Be precise and concise. Focus on merchant services, payment processing, "
    "and business solutions."
)


@dataclass
class WebResult:
    content: str
    citations: list[str] = field(default_factory=list)


class WebSearchClient:
    """
    Client for the Perplexity chat-completions search API.

    Every failure mode (missing key, transport error, timeout, non-2xx,
    malformed body) surfaces as ExternalSearchUnavailable.
    """

    def __init__(
        self,
        api_key: str | None = None,
        url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.web_search_api_key
        self.url = url or settings.web_search_url
        self.model = model or settings.web_search_model
        self.timeout = timeout or settings.web_search_timeout_seconds
        self.transport = transport

    async def search(self, query: str) -> WebResult:
        if not self.api_key:
            raise ExternalSearchUnavailable("No web search API key configured")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": query},
            ],
            "max_tokens": 500,
            "temperature": 0.2,
            "top_p": 0.9,
            "search_recency_filter": "month",
            "stream": False,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.url, headers=headers, json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            raise ExternalSearchUnavailable(f"Web search timed out after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise ExternalSearchUnavailable(
                f"Web search returned HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ExternalSearchUnavailable(f"Web search request failed: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ExternalSearchUnavailable("Web search response had no answer") from e

        if not content or not content.strip():
            raise ExternalSearchUnavailable("Web search returned an empty answer")

        citations = [c for c in data.get("citations") or [] if isinstance(c, str)]
        logger.info(f"Web search answered with {len(citations)} citations")
        return WebResult(content=content.strip(), citations=citations)
