"""Routing decisions: which agent and model work on a backlog item."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

from agent_relay.backlog import WorkItem
from agent_relay.config import SUPPORTED_AGENTS, SUPPORTED_MODES, AgentSettings

SUPPORTED_PROFILES = ("fast", "quality")
COMPLEXITIES = ("simple", "medium", "complex")

_SIMPLE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\btypos?\b",
        r"\bupdate\s+docs?\b",
        r"\breadme\b",
        r"\brename\b",
        r"\bformat(?:ting)?\b",
        r"\badd\s+comments?\b",
        r"\bfix\s+lint\b",
    )
)
_COMPLEX_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\barchitect",
        r"\bmigrat",
        r"\bsecurity\b",
        r"\boauth",
        r"\bauth(?:entication)?\b",
        r"\bencrypt",
        r"\bconcurren",
        r"\bdatabase\s+(?:design|schema)\b",
        r"\bthird[- ]party\b",
        r"\bpayment",
    )
)

# mode -> complexity -> (agent, profile)
MODE_MATRIX: dict[str, dict[str, tuple[str, str]]] = {
    "free": {
        "simple": ("gemini", "fast"),
        "medium": ("gemini", "fast"),
        "complex": ("gemini", "fast"),
    },
    "cheap": {
        "simple": ("claude", "fast"),
        "medium": ("claude", "fast"),
        "complex": ("codex", "quality"),
    },
    "good": {
        "simple": ("claude", "fast"),
        "medium": ("claude", "fast"),
        "complex": ("claude", "quality"),
    },
    "genius": {
        "simple": ("claude", "quality"),
        "medium": ("claude", "quality"),
        "complex": ("claude", "quality"),
    },
}

# Profile for an agent the matrix did not pick, e.g. a fallback substitute.
MODE_SUBSTITUTE_PROFILE: dict[str, str] = {
    "free": "fast",
    "cheap": "fast",
    "good": "quality",
    "genius": "quality",
}


@dataclass(slots=True)
class RoutingDecision:
    """Agent and model chosen for one item."""

    agent: str
    model: str
    profile: str = "fast"
    reason: str = ""


class RoutingService(Protocol):
    """Strategy injected into the runner for ``agent=auto``."""

    def decide(self, item: WorkItem, mode: str) -> RoutingDecision:
        """Return the agent/model to use for ``item`` under ``mode``."""

    def model_for_agent(self, agent: str, item: WorkItem, mode: str) -> str:
        """Return the model ``agent`` should use when it substitutes for the routed one."""


@dataclass(slots=True)
class RoutingDefaults:
    """Validated model table used by the rule-based router."""

    models: dict[str, dict[str, str]]

    @classmethod
    def from_settings(cls, settings: AgentSettings) -> RoutingDefaults:
        """Build validated defaults from agent settings."""

        models: dict[str, dict[str, str]] = {}
        for agent in SUPPORTED_AGENTS:
            profile_models = settings.models.get(agent, {})
            for profile in SUPPORTED_PROFILES:
                model = profile_models.get(profile, "")
                if not model.strip():
                    raise ValueError(
                        f"Empty model id for agent={agent!r}, profile={profile!r}",
                    )
            models[agent] = {profile: profile_models[profile].strip() for profile in SUPPORTED_PROFILES}
        return cls(models=models)

    def model_for(self, agent: str, profile: str = "fast") -> str:
        agent = _normalize(agent)
        profile = _normalize(profile)
        _validate_supported_profile(profile)
        try:
            return self.models[agent][profile]
        except KeyError as error:
            raise ValueError(f"No model configured for agent={agent!r}") from error

    def model_for_mode(self, agent: str, mode: str, complexity: str) -> str:
        """Model for ``agent`` under ``mode``, whether or not the matrix routes to it."""

        agent = _normalize(agent)
        mode = _normalize(mode)
        _validate_supported_mode(mode)
        routed_agent, profile = MODE_MATRIX[mode][complexity]
        if agent != routed_agent:
            profile = MODE_SUBSTITUTE_PROFILE[mode]
        return self.model_for(agent, profile)


class RuleBasedRouter:
    """Keyword complexity classifier mapped through a mode matrix."""

    def __init__(self, defaults: RoutingDefaults) -> None:
        self.defaults = defaults

    def decide(self, item: WorkItem, mode: str) -> RoutingDecision:
        mode = _normalize(mode)
        _validate_supported_mode(mode)
        complexity = classify_complexity(item)
        agent, profile = MODE_MATRIX[mode][complexity]
        return RoutingDecision(
            agent=agent,
            model=self.defaults.model_for(agent, profile),
            profile=profile,
            reason=f"mode={mode} complexity={complexity}",
        )

    def model_for_agent(self, agent: str, item: WorkItem, mode: str) -> str:
        return self.defaults.model_for_mode(agent, mode, classify_complexity(item))


def classify_complexity(item: WorkItem) -> str:
    """Guess item complexity from its title and description."""

    text = f"{item.title}\n{item.description}"
    if any(pattern.search(text) for pattern in _COMPLEX_PATTERNS):
        return "complex"
    if any(pattern.search(text) for pattern in _SIMPLE_PATTERNS):
        return "simple"
    return "medium"


def _normalize(value: str) -> str:
    return value.strip().lower()


def _validate_supported_mode(mode: str) -> None:
    if mode not in SUPPORTED_MODES:
        raise ValueError(f"Unsupported routing mode: {mode!r}. Use one of {SUPPORTED_MODES}.")


def _validate_supported_profile(profile: str) -> None:
    if profile not in SUPPORTED_PROFILES:
        raise ValueError(
            f"Unsupported model profile: {profile!r}. Use one of {SUPPORTED_PROFILES}.",
        )
