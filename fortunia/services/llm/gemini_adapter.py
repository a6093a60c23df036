"""Gemini LLM adapter implementation.

POST https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent

Auth:
- Header: x-goog-api-key: <key>
- NEVER put key in query param

Request body:
{
  "contents": [{
    "parts": [
      {"text": "<prompt>"},
      {"inlineData": {"mimeType": "image/jpeg", "data": "<base64>"}}
    ]
  }],
  "generationConfig": {
    "temperature": 0.9, "topK": 40, "topP": 0.95, "maxOutputTokens": 1024
  }
}

Response:
- text = concatenate candidates[0].content.parts[].text
- usage from usageMetadata
- provider_request_id = responseId when present
"""

import json

import httpx

from fortunia.services.llm.adapter import LLMAdapter
from fortunia.services.llm.errors import LLMError, LLMErrorClass
from fortunia.services.llm.types import LLMRequest, LLMResponse, LLMUsage

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"


class GeminiAdapter(LLMAdapter):
    """Google Gemini API adapter for text and text+image prompts."""

    provider = "gemini"

    async def generate(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: float,
    ) -> LLMResponse:
        url = f"{GEMINI_BASE_URL}/{req.model_name}:generateContent"

        response = await self._client.post(
            url,
            headers=self._build_headers(api_key),
            json=self._build_request_body(req),
            timeout=httpx.Timeout(timeout_s, connect=10.0),
        )
        response.raise_for_status()

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise LLMError(
                LLMErrorClass.MALFORMED_RESPONSE,
                "Gemini response was not valid JSON",
                provider=self.provider,
                status_code=response.status_code,
            ) from e
        return self._parse_response(data)

    def _build_headers(self, api_key: str) -> dict[str, str]:
        """Build request headers.

        Note: API key goes in header, NEVER in query param.
        """
        return {
            "x-goog-api-key": api_key,
            "Content-Type": "application/json",
        }

    def _build_request_body(self, req: LLMRequest) -> dict:
        parts: list[dict] = [{"text": req.prompt}]
        if req.image is not None:
            parts.append(
                {"inlineData": {"mimeType": req.image.mime_type, "data": req.image.data_b64}}
            )

        return {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "temperature": req.temperature,
                "topK": req.top_k,
                "topP": req.top_p,
                "maxOutputTokens": req.max_tokens,
            },
        }

    def _parse_response(self, data: dict) -> LLMResponse:
        candidates = data.get("candidates") if isinstance(data, dict) else None
        if not candidates:
            raise LLMError(
                LLMErrorClass.MALFORMED_RESPONSE,
                "Gemini response missing candidates",
                provider=self.provider,
            )

        content = candidates[0].get("content") or {}
        parts = content.get("parts") or []
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        if not text.strip():
            raise LLMError(
                LLMErrorClass.MALFORMED_RESPONSE,
                "Gemini response contained no text",
                provider=self.provider,
            )

        usage = None
        usage_metadata = data.get("usageMetadata")
        if usage_metadata:
            usage = LLMUsage(
                prompt_tokens=usage_metadata.get("promptTokenCount"),
                completion_tokens=usage_metadata.get("candidatesTokenCount"),
                total_tokens=usage_metadata.get("totalTokenCount"),
            )

        return LLMResponse(
            text=text,
            usage=usage,
            provider_request_id=data.get("responseId"),
        )
