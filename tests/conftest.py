"""Pytest fixtures for kgforge tests."""
from typing import Callable, Optional, Union

import pytest

from kgforge.core.config import Settings
from kgforge.llm.base import LLMResponse, ProviderName, RemoteCaller
from kgforge.llm.credentials import CredentialPool
from kgforge.llm.router import FailoverRouter
from kgforge.pipeline.critic import HeuristicCritic
from kgforge.pipeline.engine import Engine
from kgforge.pipeline.events import EventBus
from kgforge.pipeline.notes import NoteStore
from kgforge.pipeline.prompts import PromptBuilder
from kgforge.pipeline.store import ContentStore, QueueStore

Handler = Callable[[str, str, str], Union[str, Exception]]

GENERATOR_MARKER = "Knowledge System Architect"
REVISER_MARKER = "Senior Knowledge Editor"


def make_note(concept: str, links: tuple[str, ...] = ()) -> str:
    """A note that passes the default heuristic critic."""
    related = "\n".join(f"- [[{link}]]" for link in links) or "- none"
    filler = "This paragraph explains the idea with a concrete example. " * 6
    return (
        f"# 🧠 {concept}\n"
        f"> {concept} in one sentence.\n\n"
        f"## Core Idea\n{filler}\n\n"
        f"## When to Use\nWhenever the situation calls for {concept}.\n\n"
        f"## Steps / Components\n1. Observe\n2. Apply\n\n"
        f"## Case Study\nA team applied {concept} to a planning problem.\n\n"
        f"## Pros & Cons\n+ Clear\n- Slow\n\n"
        f"## Related Models\n{related}\n"
    )


class FakeProvider(RemoteCaller):
    """Scripted remote caller recording every invocation."""

    def __init__(self, name: str, handler: Optional[Handler] = None):
        self.provider_name = name
        self.handler = handler or (lambda key, model, prompt: f"reply from {model}")
        self.calls: list[tuple[str, str, str]] = []
        self.closed = False

    async def invoke(self, key: str, model: str, prompt: str) -> LLMResponse:
        self.calls.append((key, model, prompt))
        result = self.handler(key, model, prompt)
        if isinstance(result, Exception):
            raise result
        return LLMResponse(content=result, model=model, provider=self.provider_name)

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def pipeline_handler(links: dict[str, tuple[str, ...]] = None) -> Handler:
    """Handler that writes good notes for generation and revision prompts."""
    links = links or {}

    def handler(key: str, model: str, prompt: str) -> Union[str, Exception]:
        if REVISER_MARKER in prompt:
            concept = prompt.split('A note about "', 1)[1].split('"', 1)[0]
            return make_note(concept, links.get(concept, ()))
        if GENERATOR_MARKER in prompt:
            concept = prompt.split("## Concept\n", 1)[1].split("\n", 1)[0]
            return make_note(concept, links.get(concept, ()))
        return "DECISION: KEEP\n[REASON: fine]"

    return handler


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated to a temp directory, with one OpenAI key."""
    return Settings(
        _env_file=None,
        openai_api_keys="sk-test-aaaa",
        openai_model="gpt-test",
        openai_backup_model="",
        google_api_keys="",
        google_model="gemini-test",
        google_backup_model="",
        output_dir=tmp_path / "notes",
        data_dir=tmp_path / "data",
        request_delay=3600,
        generation_batch_size=5,
        max_revision_retries=2,
        request_timeout_seconds=5.0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_router(settings: Settings, clock: FakeClock):
    """Factory for a router over fake OpenAI and Gemini providers."""

    def _make(
        openai_handler: Optional[Handler] = None,
        google_handler: Optional[Handler] = None,
        notices: Optional[list[str]] = None,
    ) -> FailoverRouter:
        async def notifier(message: str) -> None:
            if notices is not None:
                notices.append(message)

        providers = {
            ProviderName.OPENAI.value: FakeProvider(ProviderName.OPENAI.value, openai_handler),
            ProviderName.GOOGLE.value: FakeProvider(ProviderName.GOOGLE.value, google_handler),
        }
        pool = CredentialPool(settings.failover_cooldown_seconds, clock=clock)
        return FailoverRouter(settings, providers, pool=pool, notifier=notifier)

    return _make


@pytest.fixture
def make_engine(settings: Settings, make_router):
    """Factory for an engine wired to fake providers and the heuristic critic."""

    def _make(handler: Optional[Handler] = None, critic=None) -> Engine:
        router = make_router(openai_handler=handler or pipeline_handler())
        return Engine(
            settings=settings,
            router=router,
            critic=critic or HeuristicCritic(settings.required_header_list, settings.critic_min_content_length),
            prompts=PromptBuilder(),
            queue_store=QueueStore(settings.queue_file),
            content_store=ContentStore(settings.cache_dir),
            note_store=NoteStore(settings.output_dir),
            events=EventBus(),
        )

    return _make
