"""Per-provider, per-key usage tracking with time-boxed cooldowns."""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from ..core.log import mask_key

logger = logging.getLogger(__name__)


@dataclass
class KeyUsage:
    """Usage state of one API key."""
    fails: int = 0
    cooldown_until: float = 0.0

    def is_available(self, now: float) -> bool:
        return now >= self.cooldown_until


class CredentialPool:
    """
    Tracks usage and cooldown state for every key of every provider.

    Records are created the first time a key shows up in configuration and
    are kept for the life of the pool. Keys removed from configuration keep
    their record but are never selected again, because selection only walks
    the active key list.
    """

    def __init__(
        self,
        cooldown_seconds: float = 300,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the pool.

        Args:
            cooldown_seconds: How long a key is skipped after a quota/auth failure
            clock: Time source in epoch seconds
        """
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self._usage: dict[str, dict[str, KeyUsage]] = {}
        self._active: dict[str, list[str]] = {}
        # Only drives the one-time failover notice
        self.failover_notified = False

    def update_keys(self, provider: str, keys: Iterable[str]) -> list[str]:
        """
        Set the active key list for a provider.

        Args:
            provider: Provider name
            keys: Keys in configured (preference) order

        Returns:
            The active key list
        """
        active = list(dict.fromkeys(keys))
        usage = self._usage.setdefault(provider, {})
        for key in active:
            if key not in usage:
                usage[key] = KeyUsage()
        self._active[provider] = active
        return active

    def active_keys(self, provider: str) -> list[str]:
        return list(self._active.get(provider, []))

    def get_usage(self, provider: str, key: str) -> Optional[KeyUsage]:
        return self._usage.get(provider, {}).get(key)

    def select_key(self, provider: str, exclude: Iterable[str] = ()) -> Optional[str]:
        """
        Return the first active key that is not cooling down.

        Args:
            provider: Provider name
            exclude: Keys to skip (already tried in the current call)

        Returns:
            A key, or None when every key is cooling down or excluded
        """
        skipped = set(exclude)
        now = self.clock()
        usage = self._usage.get(provider, {})

        for key in self._active.get(provider, []):
            if key in skipped:
                continue
            record = usage.get(key)
            if record and record.is_available(now):
                return key
        return None

    def cooldown(self, provider: str, key: str) -> None:
        """Block a key until now + cooldown_seconds."""
        record = self.get_usage(provider, key)
        if record is None:
            return
        record.cooldown_until = self.clock() + self.cooldown_seconds
        logger.warning(
            f"Key {mask_key(key)} ({provider}) failed with a quota/auth error. "
            f"Cooling down for {self.cooldown_seconds}s."
        )

    def record_failure(self, provider: str, key: str) -> None:
        record = self.get_usage(provider, key)
        if record is not None:
            record.fails += 1

    def reset(self, provider: str, key: str) -> None:
        """Clear a key's cooldown after a successful call."""
        record = self.get_usage(provider, key)
        if record is not None:
            record.cooldown_until = 0.0
            record.fails = 0
        self.failover_notified = False

    def snapshot(self) -> dict[str, list[dict]]:
        """Describe active keys (masked) with their usage, per provider."""
        now = self.clock()
        result: dict[str, list[dict]] = {}
        for provider, keys in self._active.items():
            entries = []
            for key in keys:
                record = self._usage[provider][key]
                entries.append({
                    "key": mask_key(key),
                    "fails": record.fails,
                    "cooling_down": not record.is_available(now),
                    "cooldown_remaining": max(0.0, record.cooldown_until - now),
                })
            result[provider] = entries
        return result
