"""Shared type definitions for the inference layer.

- ImagePart: Inline base64 image sent alongside the prompt
- LLMRequest: Request to a provider adapter
- LLMUsage: Token usage from provider response
- LLMResponse: Complete response from a generation call
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ImagePart:
    """Inline image for multimodal requests.

    Attributes:
        mime_type: Image MIME type (e.g. "image/jpeg")
        data_b64: Base64-encoded image bytes
    """

    mime_type: str
    data_b64: str


@dataclass(frozen=True)
class LLMUsage:
    """Token usage from provider response.

    All fields are optional as not all responses include every metric.
    """

    prompt_tokens: int | None
    completion_tokens: int | None
    total_tokens: int | None


@dataclass(frozen=True)
class LLMRequest:
    """Request to an LLM adapter.

    Attributes:
        model_name: The model identifier (e.g., "gemini-2.0-flash-exp")
        prompt: The composed instruction text
        image: Optional inline image
        max_tokens: Maximum tokens in the completion
        temperature: Sampling temperature
        top_k: Top-k sampling cutoff
        top_p: Nucleus sampling cutoff
    """

    model_name: str
    prompt: str
    image: ImagePart | None = None
    max_tokens: int = 1024
    temperature: float = 0.9
    top_k: int = 40
    top_p: float = 0.95


@dataclass(frozen=True)
class LLMResponse:
    """Complete response from a generation call.

    Attributes:
        text: The generated text content
        usage: Token usage information (may be None)
        provider_request_id: Provider's request ID for debugging (may be None)
    """

    text: str
    usage: LLMUsage | None
    provider_request_id: str | None = None
