"""Base remote caller interface."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ProviderName(str, Enum):
    """Supported providers, in failover order."""
    OPENAI = "openai"
    GOOGLE = "google"


@dataclass
class LLMResponse:
    """Response from an LLM."""
    content: str
    model: str
    provider: str
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str = "stop"
    raw_response: Optional[Any] = None

    @property
    def input_tokens(self) -> int:
        return self.usage.get("input_tokens", 0)

    @property
    def output_tokens(self) -> int:
        return self.usage.get("output_tokens", 0)


class RemoteCallError(Exception):
    """A single remote call failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        self.message = message
        super().__init__(f"[{status}] {message}" if status is not None else message)


class RemoteCaller(ABC):
    """Base class for providers that perform one call with an explicit key."""

    provider_name: str = "base"

    @abstractmethod
    async def invoke(self, key: str, model: str, prompt: str) -> LLMResponse:
        """
        Perform one completion call.

        Args:
            key: API key to authenticate with
            model: Model ID to use
            prompt: User prompt

        Returns:
            LLMResponse with generated content

        Raises:
            RemoteCallError: On HTTP errors, timeouts or unexpected response shapes
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None
