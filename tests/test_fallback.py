from __future__ import annotations

from datetime import timedelta

import allure
import pytest

from agent_relay.config import DEFAULT_FALLBACK_ORDER
from agent_relay.orchestrator.fallback import RateLimitTracker, parse_fallback_order

pytestmark = [
    allure.epic("Orchestrator"),
    allure.feature("Fallback Substitution"),
]


def _all_installed(_: str) -> bool:
    return True


def test_limit_expires_at_reported_reset_time(clock) -> None:
    tracker = RateLimitTracker(cooldown_seconds=3600, clock=clock)
    tracker.record("claude", reset_time=clock() + timedelta(minutes=10))

    clock.advance(599)
    assert tracker.is_limited("claude") is True
    clock.advance(1)
    assert tracker.is_limited("claude") is False
    assert tracker.limited_agents() == ()


def test_limit_without_reset_time_uses_cooldown(clock) -> None:
    tracker = RateLimitTracker(cooldown_seconds=60, clock=clock)
    tracker.record("codex")

    assert tracker.limited_agents() == ("codex",)
    assert tracker.next_available_at() == clock() + timedelta(seconds=60)
    clock.advance(60)
    assert tracker.is_limited("codex") is False


def test_substitute_prefers_the_requested_agent(clock) -> None:
    tracker = RateLimitTracker(clock=clock)

    substitution = tracker.substitute("codex", DEFAULT_FALLBACK_ORDER, is_installed=_all_installed)

    assert substitution.agent == "codex"
    assert substitution.skipped == ()


def test_substitute_walks_order_past_limited_and_missing_agents(clock) -> None:
    tracker = RateLimitTracker(clock=clock)
    tracker.record("claude")

    substitution = tracker.substitute(
        "claude",
        ("claude", "codex", "gemini"),
        is_installed=lambda name: name != "codex",
    )

    assert substitution.agent is not None
    assert substitution.agent == "gemini"
    assert [skip.agent for skip in substitution.skipped] == ["claude", "codex"]
    assert [skip.reason for skip in substitution.skipped] == ["rate_limited", "not_installed"]
    assert substitution.describe("claude") == (
        "Fell back from claude to gemini: "
        "claude unavailable (rate_limited: until 2026-01-13T11:30:00+00:00); "
        "codex unavailable (not_installed)"
    )


def test_substitute_skips_agents_without_credentials(clock) -> None:
    tracker = RateLimitTracker(clock=clock)

    substitution = tracker.substitute(
        "claude",
        DEFAULT_FALLBACK_ORDER,
        is_installed=_all_installed,
        has_credentials=lambda name: name == "gemini",
    )

    assert substitution.agent == "gemini"
    assert [(skip.agent, skip.reason) for skip in substitution.skipped] == [
        ("claude", "no_api_key"),
        ("codex", "no_api_key"),
    ]


def test_substitute_reports_exhaustion(clock) -> None:
    tracker = RateLimitTracker(clock=clock)
    for agent in DEFAULT_FALLBACK_ORDER:
        tracker.record(agent)

    substitution = tracker.substitute("claude", DEFAULT_FALLBACK_ORDER, is_installed=_all_installed)

    assert substitution.agent is None
    assert tuple(skip.agent for skip in substitution.skipped) == DEFAULT_FALLBACK_ORDER
    assert substitution.describe("claude").startswith("No agent available: claude unavailable")


def test_wait_seconds_is_capped_by_next_reset(clock) -> None:
    tracker = RateLimitTracker(cooldown_seconds=3600, clock=clock)

    assert tracker.wait_seconds(60) == 60
    tracker.record("claude", reset_time=clock() + timedelta(seconds=20))
    tracker.record("codex")
    assert tracker.wait_seconds(60) == 20
    clock.advance(30)
    assert tracker.wait_seconds(60) == 0


def test_record_overwrites_previous_state(clock) -> None:
    tracker = RateLimitTracker(cooldown_seconds=3600, clock=clock)
    tracker.record("gemini")
    tracker.record("gemini", reset_time=clock() + timedelta(seconds=5))

    clock.advance(5)

    assert tracker.is_limited("gemini") is False


def test_parse_fallback_order_defaults_and_normalizes() -> None:
    assert parse_fallback_order(None) == ("claude", "codex", "gemini")
    assert parse_fallback_order(" Gemini , claude ") == ("gemini", "claude")


def test_parse_fallback_order_reports_duplicates() -> None:
    warnings: list[str] = []

    order = parse_fallback_order("codex,claude,codex", warnings=warnings)

    assert order == ("codex", "claude")
    assert warnings == ["Duplicate agent in fallback order ignored: codex"]


@pytest.mark.parametrize(
    ("value", "message"),
    [
        ("", "at least one agent"),
        (" , ,", "at least one agent"),
        ("claude,copilot", "Unsupported agent in fallback order: 'copilot'"),
    ],
)
def test_parse_fallback_order_rejects_invalid_values(value, message) -> None:
    with pytest.raises(ValueError, match=message):
        parse_fallback_order(value)
