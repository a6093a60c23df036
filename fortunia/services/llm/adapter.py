"""Abstract base class for LLM adapters.

- Async adapters with httpx.AsyncClient
- No retries inside adapters
- No DB access
- No logging of request/response bodies
- Raw httpx errors bubble up to the inference client for classification
"""

from abc import ABC, abstractmethod

import httpx

from fortunia.services.llm.types import LLMRequest, LLMResponse


class LLMAdapter(ABC):
    """Abstract base class for LLM provider adapters."""

    provider: str = "unknown"

    def __init__(self, client: httpx.AsyncClient):
        """Initialize adapter with shared HTTP client.

        Args:
            client: Shared httpx.AsyncClient for connection pooling.
        """
        self._client = client

    @abstractmethod
    async def generate(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: float,
    ) -> LLMResponse:
        """Single generation call. Returns the complete response.

        Args:
            req: The request containing model, prompt, image and sampling parameters.
            api_key: The API key for authentication.
            timeout_s: Request timeout in seconds.

        Returns:
            LLMResponse with the generated text and usage info.

        Raises:
            httpx.HTTPStatusError: On non-2xx HTTP response.
            httpx.TimeoutException: On request timeout.
            httpx.NetworkError: On network failure.
            LLMError: On a 2xx response without usable text.
        """
        pass
