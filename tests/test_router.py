"""
Tests for the failover router.

Tests the model, key and provider cascade, cooldown classification and
total-exhaustion errors.
"""
import asyncio

import pytest

from kgforge.llm.base import LLMResponse, RemoteCallError, RemoteCaller
from kgforge.llm.router import AllProvidersFailedError, FailoverRouter, is_quota_error


def quota_error(key, model, prompt):
    return RemoteCallError("You exceeded your current quota", status=429)


def server_error(key, model, prompt):
    return RemoteCallError("internal error", status=500)


class TestIsQuotaError:
    """Tests for quota/auth classification."""

    @pytest.mark.parametrize("status", [401, 403, 429])
    def test_quota_statuses(self, status):
        assert is_quota_error(RemoteCallError("nope", status=status)) is True

    @pytest.mark.parametrize("message", [
        "insufficient_quota",
        "Rate limit reached for requests",
        "PERMISSION_DENIED: permission denied",
        "HTTP 429 from upstream",
    ])
    def test_quota_markers_in_message(self, message):
        assert is_quota_error(RemoteCallError(message)) is True

    def test_transient_errors_are_not_quota(self):
        assert is_quota_error(RemoteCallError("bad gateway", status=502)) is False
        assert is_quota_error(RemoteCallError("request timed out after 5s")) is False


class TestKeyCascade:
    """Tests for the per-key primary/backup cascade."""

    @pytest.mark.asyncio
    async def test_first_key_primary_model_success(self, make_router):
        router = make_router()

        assert await router.call("hi") == "reply from gpt-test"
        assert router.providers["openai"].calls == [("sk-test-aaaa", "gpt-test", "hi")]

    @pytest.mark.asyncio
    async def test_backup_model_success_leaves_key_eligible(self, settings, make_router):
        settings.openai_backup_model = "gpt-backup"

        def handler(key, model, prompt):
            if model == "gpt-test":
                return RemoteCallError("rate limit", status=429)
            return "backup answer"

        router = make_router(openai_handler=handler)

        assert await router.call("hi") == "backup answer"
        usage = router.pool.get_usage("openai", "sk-test-aaaa")
        assert usage.cooldown_until == 0.0
        assert router.pool.select_key("openai") == "sk-test-aaaa"

    @pytest.mark.asyncio
    async def test_quota_failure_cools_key_and_moves_on(self, settings, clock, make_router):
        settings.openai_api_keys = "sk-one-1111\nsk-two-2222"

        def handler(key, model, prompt):
            if key == "sk-one-1111":
                return quota_error(key, model, prompt)
            return "second key answer"

        notices: list[str] = []
        router = make_router(openai_handler=handler, notices=notices)

        assert await router.call("hi") == "second key answer"
        usage = router.pool.get_usage("openai", "sk-one-1111")
        assert usage.cooldown_until == clock.now + settings.failover_cooldown_seconds
        assert usage.fails == 1
        assert "OpenAI key ...1111 failed. Trying next." in notices

    @pytest.mark.asyncio
    async def test_transient_failure_does_not_cool_key(self, settings, make_router):
        settings.openai_api_keys = "sk-one-1111\nsk-two-2222"

        def handler(key, model, prompt):
            if key == "sk-one-1111":
                return server_error(key, model, prompt)
            return "ok"

        router = make_router(openai_handler=handler)

        assert await router.call("hi") == "ok"
        usage = router.pool.get_usage("openai", "sk-one-1111")
        assert usage.cooldown_until == 0.0
        assert usage.fails == 1

    @pytest.mark.asyncio
    async def test_key_is_tried_once_per_call(self, settings, make_router):
        settings.openai_api_keys = "sk-one-1111"
        router = make_router(openai_handler=server_error)

        with pytest.raises(AllProvidersFailedError):
            await router.call("hi")

        assert len(router.providers["openai"].calls) == 1


class TestProviderCascade:
    """Tests for provider ordering and failover notices."""

    @pytest.mark.asyncio
    async def test_falls_back_to_gemini_with_one_notice(self, settings, make_router):
        settings.google_api_keys = "g-key-9999"
        notices: list[str] = []
        router = make_router(
            openai_handler=quota_error,
            google_handler=lambda key, model, prompt: "gemini answer",
            notices=notices,
        )

        assert await router.call("first") == "gemini answer"
        switch = [n for n in notices if n.startswith("All OpenAI keys failed")]
        assert switch == ["All OpenAI keys failed or unavailable. Switching to Google Gemini..."]

    @pytest.mark.asyncio
    async def test_failover_notice_not_repeated_until_success(self, settings, make_router):
        settings.google_api_keys = "g-key-9999"
        notices: list[str] = []
        router = make_router(
            openai_handler=quota_error,
            google_handler=quota_error,
            notices=notices,
        )

        for _ in range(2):
            with pytest.raises(AllProvidersFailedError):
                await router.call("hi")

        switch = [n for n in notices if "Switching to" in n]
        assert len(switch) == 1

    @pytest.mark.asyncio
    async def test_provider_without_keys_is_skipped(self, settings, make_router):
        settings.openai_api_keys = ""
        settings.google_api_keys = "g-key-9999"
        notices: list[str] = []
        router = make_router(
            google_handler=lambda key, model, prompt: "gemini answer",
            notices=notices,
        )

        assert await router.call("hi") == "gemini answer"
        assert router.providers["openai"].calls == []
        assert notices == []

    @pytest.mark.asyncio
    async def test_provider_without_model_is_skipped(self, settings, make_router):
        settings.openai_model = ""
        settings.google_api_keys = "g-key-9999"
        router = make_router(google_handler=lambda key, model, prompt: "gemini answer")

        assert await router.call("hi") == "gemini answer"
        assert router.providers["openai"].calls == []


class TestExhaustion:
    """Tests for AllProvidersFailedError messages."""

    @pytest.mark.asyncio
    async def test_no_keys_configured(self, settings, make_router):
        settings.openai_api_keys = "\n  \n"
        router = make_router()

        with pytest.raises(AllProvidersFailedError, match="No API keys are configured"):
            await router.call("hi")

    @pytest.mark.asyncio
    async def test_keys_without_models(self, settings, make_router):
        settings.openai_model = " "

        router = make_router()

        with pytest.raises(AllProvidersFailedError, match="no model name is set"):
            await router.call("hi")

    @pytest.mark.asyncio
    async def test_all_keys_cooling_down(self, make_router):
        router = make_router()
        router.pool.update_keys("openai", ["sk-test-aaaa"])
        router.pool.cooldown("openai", "sk-test-aaaa")

        with pytest.raises(AllProvidersFailedError, match="cooling down"):
            await router.call("hi")
        assert router.providers["openai"].calls == []

    @pytest.mark.asyncio
    async def test_carries_last_error(self, settings, make_router):
        settings.google_api_keys = "g-key-9999"
        router = make_router(
            openai_handler=server_error,
            google_handler=lambda key, model, prompt: RemoteCallError("gemini down", status=503),
        )

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await router.call("hi")

        assert "gemini down" in str(exc_info.value)
        assert "gemini down" in exc_info.value.last_error

    @pytest.mark.asyncio
    async def test_cooldown_expires_and_key_is_retried(self, settings, clock, make_router):
        calls = {"n": 0}

        def handler(key, model, prompt):
            calls["n"] += 1
            if calls["n"] == 1:
                return quota_error(key, model, prompt)
            return "recovered"

        router = make_router(openai_handler=handler)

        with pytest.raises(AllProvidersFailedError):
            await router.call("hi")

        clock.advance(settings.failover_cooldown_seconds)
        assert await router.call("hi") == "recovered"


class SlowProvider(RemoteCaller):
    """Provider that never answers in time."""

    async def invoke(self, key, model, prompt) -> LLMResponse:
        await asyncio.sleep(10)
        return LLMResponse(content="late", model=model, provider="openai")


class TestRouterPlumbing:
    """Tests for timeouts, live reconfiguration and shutdown."""

    @pytest.mark.asyncio
    async def test_timeout_is_a_transient_failure(self, settings):
        settings.request_timeout_seconds = 0.01
        router = FailoverRouter(settings, {"openai": SlowProvider()})

        with pytest.raises(AllProvidersFailedError, match="timed out"):
            await router.call("hi")
        assert router.pool.get_usage("openai", "sk-test-aaaa").cooldown_until == 0.0

    @pytest.mark.asyncio
    async def test_key_list_is_reread_on_every_call(self, settings, make_router):
        router = make_router()
        await router.call("hi")

        settings.openai_api_keys = "sk-new-5555"
        await router.call("hi")

        keys = [call[0] for call in router.providers["openai"].calls]
        assert keys == ["sk-test-aaaa", "sk-new-5555"]

    @pytest.mark.asyncio
    async def test_close_closes_providers(self, make_router):
        router = make_router()
        await router.close()

        assert router.providers["openai"].closed is True
        assert router.providers["google"].closed is True
