"""OpenAI-compatible chat completions provider."""
import logging
from typing import Optional

import openai
from openai import AsyncOpenAI

from .base import LLMResponse, ProviderName, RemoteCallError, RemoteCaller
from ..core.log import mask_key

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"


class OpenAIProvider(RemoteCaller):
    """
    Calls an OpenAI-compatible /chat/completions endpoint.

    One AsyncOpenAI client is kept per key. SDK retries are disabled so that
    failover decisions stay with the router.
    """

    provider_name = ProviderName.OPENAI.value

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        timeout: Optional[float] = None,
    ):
        """
        Initialize OpenAI provider.

        Args:
            base_url: API base URL (proxies and compatible servers work too)
            temperature: Sampling temperature
            max_tokens: Maximum output tokens
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._clients: dict[str, AsyncOpenAI] = {}

    def _get_client(self, key: str) -> AsyncOpenAI:
        """Get or create the client bound to a key."""
        if key not in self._clients:
            self._clients[key] = AsyncOpenAI(
                api_key=key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._clients[key]

    async def invoke(self, key: str, model: str, prompt: str) -> LLMResponse:
        """Generate a response from an OpenAI-compatible endpoint."""
        client = self._get_client(key)
        logger.debug(f"OpenAI request: model={model} key={mask_key(key)}")

        try:
            response = await client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except openai.APIStatusError as e:
            raise RemoteCallError(e.message, status=e.status_code) from e
        except openai.APIError as e:
            raise RemoteCallError(e.message) from e

        if not response.choices or response.choices[0].message.content is None:
            raise RemoteCallError(f"response has no message content (model {model})")

        usage = {}
        if response.usage:
            usage = {
                "input_tokens": response.usage.prompt_tokens,
                "output_tokens": response.usage.completion_tokens,
            }

        return LLMResponse(
            content=response.choices[0].message.content.strip(),
            model=model,
            provider=self.provider_name,
            usage=usage,
            finish_reason=response.choices[0].finish_reason or "unknown",
            raw_response=response,
        )

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
