import logging
from abc import ABC, abstractmethod

import httpx

from tile_recommender.errors import LLMProviderError, LLMRateLimitError, LLMResponseError
from tile_recommender.models.llm import LLMMessage, LLMTool, LLMTurnResult

log = logging.getLogger(__name__)


class LLMProvider(ABC):
    """One vendor behind the neutral ``chat`` contract.

    Implementations issue exactly one inference call per ``chat`` and never
    retry; retry policy belongs to the caller.
    """

    name: str = "base"

    def __init__(self, model: str, client: httpx.AsyncClient | None = None, timeout: float = 60.0):
        self.model = model
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @abstractmethod
    async def chat(
        self,
        messages: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMTool] | None = None,
    ) -> LLMTurnResult:
        ...

    # -- Low-level helpers --

    async def _post_json(self, url: str, payload: dict, headers: dict | None = None) -> dict:
        """POST a JSON body and return the decoded JSON response."""
        try:
            response = await self._client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            log.error("LLM_TRANSPORT_ERROR | provider=%s | error=%r", self.name, e)
            raise LLMProviderError(f"{self.name} request failed: {e}") from e

        if response.status_code == 429:
            log.warning("LLM_RATE_LIMITED | provider=%s", self.name)
            raise LLMRateLimitError()
        if response.is_error:
            log.error(
                "LLM_HTTP_ERROR | provider=%s | status=%s | body=%s",
                self.name, response.status_code, response.text[:500],
            )
            raise LLMProviderError(f"{self.name} returned HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise LLMResponseError(f"{self.name} returned a non-JSON body") from e

    async def aclose(self):
        """Close the underlying HTTP client."""
        await self._client.aclose()
