"""Failover router: key, model and provider cascade for a single prompt."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .base import LLMResponse, ProviderName, RemoteCallError, RemoteCaller
from .credentials import CredentialPool
from .gemini import GeminiProvider
from .openai_provider import OpenAIProvider
from ..core.config import Settings
from ..core.log import mask_key

logger = logging.getLogger(__name__)

QUOTA_STATUSES = frozenset({401, 403, 429})
QUOTA_MARKERS = ("insufficient_quota", "rate limit", "rate_limit", "quota", "permission", "429")

PROVIDER_LABELS = {
    ProviderName.OPENAI.value: "OpenAI",
    ProviderName.GOOGLE.value: "Google Gemini",
}

Notifier = Callable[[str], Awaitable[None]]


class KeyFailedError(Exception):
    """A key failed with every configured model for one call."""

    def __init__(self, provider: str, key: str, errors: list[RemoteCallError]):
        self.provider = provider
        self.key = key
        self.errors = errors
        if len(errors) > 1:
            detail = "both primary and backup models failed"
        else:
            detail = "primary model failed, no backup"
        last = errors[-1] if errors else "no model attempted"
        super().__init__(f"{provider} key {mask_key(key)} failed ({detail}): {last}")


class AllProvidersFailedError(Exception):
    """Every credential of every configured provider failed."""

    def __init__(self, message: str, last_error: Optional[str] = None):
        self.last_error = last_error
        super().__init__(message)


def is_quota_error(error: BaseException) -> bool:
    """Check whether an error is quota/auth-class (worth a key cooldown)."""
    if getattr(error, "status", None) in QUOTA_STATUSES:
        return True
    message = str(getattr(error, "message", None) or error).lower()
    return any(marker in message for marker in QUOTA_MARKERS)


@dataclass
class ProviderSlot:
    """Provider configuration as read at the start of a call."""
    name: str
    keys: list[str]
    model: str = ""
    backup_model: str = ""

    @property
    def models(self) -> list[str]:
        return [m for m in (self.model, self.backup_model) if m]

    @property
    def label(self) -> str:
        return PROVIDER_LABELS.get(self.name, self.name)


class FailoverRouter:
    """
    Routes a prompt across keys, models and providers until one succeeds.

    Order:
    - provider A (OpenAI-compatible) before provider B (Gemini)
    - within a provider, keys in configured order, skipping cooling-down keys
    - within a key, the primary model and then the backup model

    Key lists and models are re-read from settings on every call, so edits
    to the configuration take effect without a restart.
    """

    def __init__(
        self,
        settings: Settings,
        providers: dict[str, RemoteCaller],
        pool: Optional[CredentialPool] = None,
        notifier: Optional[Notifier] = None,
    ):
        """
        Initialize the router.

        Args:
            settings: Live settings object
            providers: Dict of provider_name -> RemoteCaller instances
            pool: Credential pool; a new one is created if omitted
            notifier: Async callback for user-facing notices
        """
        self.settings = settings
        self.providers = providers
        self.pool = pool or CredentialPool(settings.failover_cooldown_seconds)
        self.notifier = notifier

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        notifier: Optional[Notifier] = None,
    ) -> "FailoverRouter":
        """Build a router with the OpenAI and Gemini providers."""
        timeout = settings.request_timeout_seconds
        providers: dict[str, RemoteCaller] = {
            ProviderName.OPENAI.value: OpenAIProvider(
                base_url=settings.openai_base_url,
                temperature=settings.generation_temperature,
                max_tokens=settings.generation_max_tokens,
                timeout=timeout,
            ),
            ProviderName.GOOGLE.value: GeminiProvider(
                temperature=settings.generation_temperature,
                max_tokens=settings.generation_max_tokens,
                timeout=timeout,
            ),
        }
        return cls(settings, providers, notifier=notifier)

    def _provider_slots(self) -> list[ProviderSlot]:
        s = self.settings
        return [
            ProviderSlot(
                ProviderName.OPENAI.value,
                s.openai_key_list,
                s.openai_model.strip(),
                s.openai_backup_model.strip(),
            ),
            ProviderSlot(
                ProviderName.GOOGLE.value,
                s.google_key_list,
                s.google_model.strip(),
                s.google_backup_model.strip(),
            ),
        ]

    async def _notify(self, message: str) -> None:
        logger.info(message)
        if self.notifier is not None:
            await self.notifier(message)

    async def call(self, prompt: str) -> str:
        """Run a prompt through the cascade and return the response text."""
        response = await self.generate(prompt)
        return response.content

    async def generate(self, prompt: str) -> LLMResponse:
        """
        Run a prompt through the provider cascade.

        Args:
            prompt: User prompt

        Returns:
            LLMResponse from the first key/model that succeeded

        Raises:
            AllProvidersFailedError: If no provider produced a response
        """
        self.pool.cooldown_seconds = self.settings.failover_cooldown_seconds
        last_error: Optional[str] = None
        keys_configured = False
        any_enabled = False
        previous_attempted: Optional[ProviderSlot] = None

        for slot in self._provider_slots():
            active = self.pool.update_keys(slot.name, slot.keys)
            if not active:
                continue
            keys_configured = True

            if not slot.models:
                message = f"{slot.label}: API keys are configured but no model name is set"
                logger.warning(message)
                last_error = last_error or message
                previous_attempted = slot
                continue
            if slot.name not in self.providers:
                logger.warning(f"No remote caller registered for provider '{slot.name}'")
                continue
            any_enabled = True

            if previous_attempted is not None and not self.pool.failover_notified:
                self.pool.failover_notified = True
                await self._notify(
                    f"All {previous_attempted.label} keys failed or unavailable. "
                    f"Switching to {slot.label}..."
                )

            tried: list[str] = []
            while True:
                key = self.pool.select_key(slot.name, exclude=tried)
                if key is None:
                    break
                tried.append(key)
                logger.debug(f"Trying {slot.label} key {mask_key(key)}")
                try:
                    return await self._call_with_key(slot, key, prompt)
                except KeyFailedError as e:
                    last_error = str(e)
                    await self._notify(f"{slot.label} key {mask_key(key)} failed. Trying next.")

            previous_attempted = slot

        if not keys_configured:
            raise AllProvidersFailedError("No API keys are configured.")
        if not any_enabled:
            raise AllProvidersFailedError(
                "API keys are configured but no model name is set.", last_error
            )
        if last_error is None:
            raise AllProvidersFailedError("All API keys are cooling down.")
        raise AllProvidersFailedError(
            f"All API providers failed. Last error: {last_error}", last_error
        )

    async def _call_with_key(self, slot: ProviderSlot, key: str, prompt: str) -> LLMResponse:
        """Try one key with the primary model, then the backup model."""
        errors: list[RemoteCallError] = []

        for model in slot.models:
            try:
                response = await self._invoke(slot.name, key, model, prompt)
            except RemoteCallError as e:
                logger.warning(
                    f"{slot.label} model '{model}' failed for key {mask_key(key)}: {e}"
                )
                errors.append(e)
                continue

            self.pool.reset(slot.name, key)
            return response

        self.pool.record_failure(slot.name, key)
        if any(is_quota_error(e) for e in errors):
            self.pool.cooldown(slot.name, key)
        raise KeyFailedError(slot.name, key, errors)

    async def _invoke(self, provider: str, key: str, model: str, prompt: str) -> LLMResponse:
        timeout = self.settings.request_timeout_seconds
        try:
            return await asyncio.wait_for(
                self.providers[provider].invoke(key, model, prompt),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise RemoteCallError(f"request timed out after {timeout}s") from e

    async def close(self) -> None:
        for provider in self.providers.values():
            await provider.close()
