"""
Tests for the heuristic and model critics.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from kgforge.llm.router import AllProvidersFailedError
from kgforge.pipeline.critic import (
    HEURISTIC_PASS_REASON,
    HeuristicCritic,
    ModelCritic,
    build_critic,
    parse_decision,
)
from kgforge.pipeline.prompts import PromptBuilder

from conftest import make_note

HEADERS = ["## Core Idea", "## When to Use", "## Steps / Components",
           "## Case Study", "## Pros & Cons", "## Related Models"]


class TestHeuristicCritic:
    """Tests for HeuristicCritic."""

    @pytest.mark.asyncio
    async def test_complete_note_passes(self):
        critic = HeuristicCritic(HEADERS, min_length=400)

        verdict = await critic.judge(make_note("Inversion"))

        assert verdict.approved is True
        assert verdict.reason == HEURISTIC_PASS_REASON

    def test_headers_are_case_insensitive(self):
        critic = HeuristicCritic(["## CORE IDEA"], min_length=0)

        assert critic.check("## core idea\nbody").approved is True

    def test_reports_every_problem(self):
        critic = HeuristicCritic(["## Core Idea", "## Case Study"], min_length=400)

        verdict = critic.check("## Core Idea\nAs an AI, I cannot help with that.")

        assert verdict.approved is False
        reasons = verdict.reason.split("; ")
        assert reasons[0] == "missing required headers: ## case study"
        assert reasons[1].startswith("content too short (current: ")
        assert reasons[1].endswith("required: 400)")
        assert reasons[2].startswith("contains a model refusal")

    def test_chinese_refusal_is_detected(self):
        critic = HeuristicCritic([], min_length=0)

        verdict = critic.check("很抱歉，我无法完成这个请求。")

        assert verdict.approved is False
        assert "model refusal" in verdict.reason

    def test_blank_headers_are_ignored(self):
        critic = HeuristicCritic(["", "  "], min_length=0)

        assert critic.check("anything").approved is True


class TestParseDecision:
    """Tests for the model critic response grammar."""

    def test_keep_with_reason(self):
        verdict = parse_decision("DECISION: KEEP\n[REASON: clear and well structured]")

        assert verdict.approved is True
        assert verdict.reason == "clear and well structured"

    def test_discard_is_case_insensitive(self):
        verdict = parse_decision("decision: discard\n[reason: factual errors ]")

        assert verdict.approved is False
        assert verdict.reason == "factual errors"

    def test_missing_decision_is_a_rejection(self):
        verdict = parse_decision("Looks great to me!")

        assert verdict.approved is False
        assert "without a stated reason" in verdict.reason


class TestModelCritic:
    """Tests for ModelCritic."""

    @pytest.mark.asyncio
    async def test_sends_critic_prompt_and_parses_reply(self):
        router = MagicMock()
        router.call = AsyncMock(return_value="DECISION: KEEP\n[REASON: good]")
        critic = ModelCritic(router, PromptBuilder())

        verdict = await critic.judge("# Note body")

        assert verdict.approved is True
        prompt = router.call.await_args.args[0]
        assert "# Note body" in prompt
        assert "DECISION: KEEP or DISCARD" in prompt

    @pytest.mark.asyncio
    async def test_exhaustion_becomes_rejection(self):
        router = MagicMock()
        router.call = AsyncMock(side_effect=AllProvidersFailedError("All API keys are cooling down."))
        critic = ModelCritic(router, PromptBuilder())

        verdict = await critic.judge("# Note body")

        assert verdict.approved is False
        assert verdict.reason == "model critic call failed: All API keys are cooling down."


class TestBuildCritic:
    """Tests for critic selection."""

    def test_heuristic_by_default(self, settings):
        critic = build_critic(settings)

        assert isinstance(critic, HeuristicCritic)
        assert critic.required_headers[0] == "## core idea"
        assert critic.min_length == settings.critic_min_content_length

    def test_ai_mode_needs_router(self, settings):
        settings.critic_mode = "ai"

        with pytest.raises(ValueError):
            build_critic(settings)

        assert isinstance(build_critic(settings, router=MagicMock()), ModelCritic)
