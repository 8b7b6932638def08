"""Critics: decide whether generated content is kept or sent back for revision."""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from .prompts import PromptBuilder
from ..core.config import Settings
from ..llm.router import AllProvidersFailedError, FailoverRouter

logger = logging.getLogger(__name__)

HEURISTIC_PASS_REASON = "passed all heuristic checks"

# Phrases a model uses when it declines instead of answering
REFUSAL_PATTERNS = [
    r"as an? (ai|artificial intelligence)",
    r"as a (large )?language model",
    r"i (can ?not|can't|am unable to)",
    r"i'm sorry",
    r"作为一?个AI",
    r"作为语言模型",
    r"我不能",
    r"我无法",
    r"很抱歉",
]

_DECISION = re.compile(r"DECISION:\s*(KEEP|DISCARD)", re.IGNORECASE)
_REASON = re.compile(r"\[REASON:\s*([^\]]+)\]", re.IGNORECASE)


@dataclass
class Verdict:
    """Outcome of a review."""
    approved: bool
    reason: str


class Critic(ABC):
    """Judges a piece of generated content."""

    @abstractmethod
    async def judge(self, content: str) -> Verdict:
        pass


class HeuristicCritic(Critic):
    """Rule-based critic: required headers, minimum length, refusal phrases."""

    def __init__(self, required_headers: list[str], min_length: int = 400):
        self.required_headers = [h.strip().lower() for h in required_headers if h.strip()]
        self.min_length = min_length

    async def judge(self, content: str) -> Verdict:
        return self.check(content)

    def check(self, content: str) -> Verdict:
        reasons: list[str] = []
        content_lower = content.lower()

        missing = [h for h in self.required_headers if h not in content_lower]
        if missing:
            reasons.append(f"missing required headers: {', '.join(missing)}")

        if len(content) < self.min_length:
            reasons.append(
                f"content too short (current: {len(content)}, required: {self.min_length})"
            )

        for pattern in REFUSAL_PATTERNS:
            if re.search(pattern, content, re.IGNORECASE):
                reasons.append(f"contains a model refusal (matched: '{pattern}')")
                break

        if reasons:
            return Verdict(approved=False, reason="; ".join(reasons))
        return Verdict(approved=True, reason=HEURISTIC_PASS_REASON)


class ModelCritic(Critic):
    """Asks a model to KEEP or DISCARD the content."""

    def __init__(self, router: FailoverRouter, prompts: PromptBuilder):
        self.router = router
        self.prompts = prompts

    async def judge(self, content: str) -> Verdict:
        prompt = self.prompts.critic_prompt(content)
        try:
            response = await self.router.call(prompt)
        except AllProvidersFailedError as e:
            logger.error(f"Model critic call failed: {e}")
            return Verdict(approved=False, reason=f"model critic call failed: {e}")
        return parse_decision(response)


def parse_decision(response: str) -> Verdict:
    """
    Parse a critic model response.

    Expects "DECISION: KEEP|DISCARD" and optionally "[REASON: ...]". A response
    without a decision counts as a rejection.
    """
    decision = _DECISION.search(response)
    reason_match = _REASON.search(response)

    approved = bool(decision) and decision.group(1).upper() == "KEEP"
    if reason_match:
        reason = reason_match.group(1).strip()
    elif approved:
        reason = "approved by model critic"
    else:
        reason = "rejected by model critic without a stated reason"
    return Verdict(approved=approved, reason=reason)


def build_critic(
    settings: Settings,
    router: Optional[FailoverRouter] = None,
    prompts: Optional[PromptBuilder] = None,
) -> Critic:
    """Create the critic selected by settings.critic_mode."""
    if settings.critic_mode == "ai":
        if router is None:
            raise ValueError("critic_mode 'ai' needs a router")
        return ModelCritic(router, prompts or PromptBuilder.from_settings(settings))
    return HeuristicCritic(
        required_headers=settings.required_header_list,
        min_length=settings.critic_min_content_length,
    )
