"""Inference layer for the Gemini model.

- Provider adapter with async httpx support
- Error classification and normalization
- InferenceClient applying per-attempt timeouts and bounded retries

Usage:
    from fortunia.services.llm import GeminiAdapter, InferenceClient

    client = InferenceClient(GeminiAdapter(httpx_client), api_key=key, model_name=model)
    response = await client.generate(prompt, ImagePart("image/jpeg", data_b64))
"""

from fortunia.services.llm.adapter import LLMAdapter
from fortunia.services.llm.client import InferenceClient, InferenceError
from fortunia.services.llm.errors import (
    LLMError,
    LLMErrorClass,
    classify_gemini_error,
    error_from_exception,
)
from fortunia.services.llm.gemini_adapter import GeminiAdapter
from fortunia.services.llm.types import ImagePart, LLMRequest, LLMResponse, LLMUsage

__all__ = [
    # Core types
    "ImagePart",
    "LLMRequest",
    "LLMResponse",
    "LLMUsage",
    # Adapters
    "LLMAdapter",
    "GeminiAdapter",
    # Client
    "InferenceClient",
    "InferenceError",
    # Errors
    "LLMError",
    "LLMErrorClass",
    "classify_gemini_error",
    "error_from_exception",
]
