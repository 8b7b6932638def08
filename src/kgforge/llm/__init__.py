"""Remote callers, credential pool and failover routing."""
from .base import LLMResponse, ProviderName, RemoteCallError, RemoteCaller
from .credentials import CredentialPool, KeyUsage
from .gemini import GeminiProvider
from .openai_provider import OpenAIProvider
from .router import (
    AllProvidersFailedError,
    FailoverRouter,
    KeyFailedError,
    ProviderSlot,
    is_quota_error,
)

__all__ = [
    "LLMResponse",
    "ProviderName",
    "RemoteCallError",
    "RemoteCaller",
    "CredentialPool",
    "KeyUsage",
    "GeminiProvider",
    "OpenAIProvider",
    "AllProvidersFailedError",
    "FailoverRouter",
    "KeyFailedError",
    "ProviderSlot",
    "is_quota_error",
]
