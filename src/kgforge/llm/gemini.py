"""Google Gemini provider over the generativelanguage REST API."""
import json
import logging
from typing import Optional

import httpx

from .base import LLMResponse, ProviderName, RemoteCallError, RemoteCaller
from ..core.log import mask_key

logger = logging.getLogger(__name__)

# Gemini API endpoint
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


class GeminiProvider(RemoteCaller):
    """
    Google Gemini provider using the Google AI Studio API.

    The key travels per request in the x-goog-api-key header, so one HTTP
    client serves every configured key.
    """

    provider_name = ProviderName.GOOGLE.value

    def __init__(
        self,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        timeout: Optional[float] = None,
        base_url: str = GEMINI_API_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Gemini provider.

        Args:
            temperature: Sampling temperature
            max_tokens: Maximum output tokens
            timeout: Request timeout in seconds
            base_url: API base URL
            transport: Optional httpx transport (used by tests)
        """
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.base_url = base_url
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def invoke(self, key: str, model: str, prompt: str) -> LLMResponse:
        """Generate a response from Gemini."""
        client = self._get_client()
        logger.debug(f"Gemini request: model={model} key={mask_key(key)}")

        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_tokens,
            },
        }

        try:
            response = await client.post(
                f"/models/{model}:generateContent",
                json=payload,
                headers={"x-goog-api-key": key},
            )
        except httpx.TimeoutException as e:
            raise RemoteCallError(f"request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise RemoteCallError(f"request failed: {e}") from e

        if response.status_code >= 400:
            raise RemoteCallError(response.text, status=response.status_code)

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise RemoteCallError(f"response is not JSON: {e}") from e

        return self._parse_response(model, data)

    def _parse_response(self, model: str, data: dict) -> LLMResponse:
        """Parse a generateContent response body."""
        candidates = data.get("candidates") or []
        if not candidates:
            raise RemoteCallError(
                f"response is missing candidates. Full response: {json.dumps(data)}"
            )

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        if not parts or "text" not in parts[0]:
            raise RemoteCallError(
                f"candidate has no text part. Full response: {json.dumps(data)}"
            )

        usage = {}
        metadata = data.get("usageMetadata")
        if metadata:
            usage = {
                "input_tokens": metadata.get("promptTokenCount", 0),
                "output_tokens": metadata.get("candidatesTokenCount", 0),
            }

        return LLMResponse(
            content=parts[0]["text"].strip(),
            model=model,
            provider=self.provider_name,
            usage=usage,
            finish_reason=candidate.get("finishReason", "unknown"),
            raw_response=data,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
