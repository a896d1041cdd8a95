"""Per-run rate-limit bookkeeping and fallback agent substitution."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from agent_relay.common import utc_now
from agent_relay.config import DEFAULT_FALLBACK_ORDER, SUPPORTED_AGENTS

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 3_600.0


@dataclass(slots=True)
class FallbackState:
    """Why and until when an agent is considered unavailable."""

    detected_at: datetime
    reset_time: datetime | None = None

    def available_at(self, cooldown: timedelta) -> datetime:
        if self.reset_time is not None:
            return self.reset_time
        return self.detected_at + cooldown


@dataclass(slots=True)
class FallbackSkip:
    """One agent passed over while walking the fallback order."""

    agent: str
    reason: str
    detail: str | None = None

    def describe(self) -> str:
        detail = f": {self.detail}" if self.detail else ""
        return f"{self.agent} unavailable ({self.reason}{detail})"


@dataclass(slots=True)
class Substitution:
    """Result of walking the fallback order."""

    agent: str | None
    skipped: tuple[FallbackSkip, ...]

    def describe(self, preferred: str) -> str:
        reasons = "; ".join(skip.describe() for skip in self.skipped)
        if self.agent is None:
            return f"No agent available: {reasons or 'empty fallback order'}"
        return f"Fell back from {preferred} to {self.agent}: {reasons}"


class RateLimitTracker:
    """In-memory map of rate-limited agents owned by one runner."""

    def __init__(
        self,
        *,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self._clock = clock
        self._limited: dict[str, FallbackState] = {}

    def record(self, agent: str, *, reset_time: datetime | None = None) -> FallbackState:
        state = FallbackState(detected_at=self._clock(), reset_time=reset_time)
        self._limited[agent] = state
        logger.warning(
            "Agent rate limited: agent=%s available_at=%s",
            agent,
            state.available_at(self.cooldown).isoformat(),
        )
        return state

    def is_limited(self, agent: str) -> bool:
        state = self._limited.get(agent)
        if state is None:
            return False
        if self._clock() >= state.available_at(self.cooldown):
            del self._limited[agent]
            logger.info("Agent rate limit expired: agent=%s", agent)
            return False
        return True

    def limited_agents(self) -> tuple[str, ...]:
        return tuple(agent for agent in list(self._limited) if self.is_limited(agent))

    def next_available_at(self) -> datetime | None:
        """Earliest instant at which some limited agent becomes usable again."""

        times = [state.available_at(self.cooldown) for state in self._limited.values()]
        return min(times) if times else None

    def wait_seconds(self, ceiling: float) -> float:
        """Seconds to sleep before the next substitution attempt, at most ``ceiling``."""

        available_at = self.next_available_at()
        if available_at is None:
            return ceiling
        remaining = (available_at - self._clock()).total_seconds()
        return min(ceiling, max(0.0, remaining))

    def substitute(
        self,
        preferred: str,
        order: Iterable[str],
        *,
        is_installed: Callable[[str], bool],
        has_credentials: Callable[[str], bool] | None = None,
    ) -> Substitution:
        """Return ``preferred`` if usable, else the first usable agent in ``order``."""

        seen: set[str] = set()
        skipped: list[FallbackSkip] = []
        for candidate in (preferred, *order):
            if candidate in seen:
                continue
            seen.add(candidate)
            skip = self._skip_reason(candidate, is_installed, has_credentials)
            if skip is not None:
                logger.debug("Fallback skips %s", skip.describe())
                skipped.append(skip)
                continue
            if candidate != preferred:
                logger.info("Falling back from %s to %s", preferred, candidate)
            return Substitution(agent=candidate, skipped=tuple(skipped))
        return Substitution(agent=None, skipped=tuple(skipped))

    def _skip_reason(
        self,
        agent: str,
        is_installed: Callable[[str], bool],
        has_credentials: Callable[[str], bool] | None,
    ) -> FallbackSkip | None:
        if self.is_limited(agent):
            available_at = self._limited[agent].available_at(self.cooldown)
            return FallbackSkip(agent, "rate_limited", f"until {available_at.isoformat()}")
        if not is_installed(agent):
            return FallbackSkip(agent, "not_installed")
        if has_credentials is not None and not has_credentials(agent):
            return FallbackSkip(agent, "no_api_key")
        return None


def parse_fallback_order(
    value: str | None,
    *,
    warnings: list[str] | None = None,
) -> tuple[str, ...]:
    """Parse a comma-separated agent list; missing value means the default order."""

    if value is None:
        return DEFAULT_FALLBACK_ORDER
    names = [part.strip().lower() for part in value.split(",") if part.strip()]
    if not names:
        raise ValueError("Fallback order must name at least one agent.")

    order: list[str] = []
    for name in names:
        if name not in SUPPORTED_AGENTS:
            raise ValueError(
                f"Unsupported agent in fallback order: {name!r}. "
                f"Use {', '.join(SUPPORTED_AGENTS)}.",
            )
        if name in order:
            message = f"Duplicate agent in fallback order ignored: {name}"
            logger.warning(message)
            if warnings is not None:
                warnings.append(message)
            continue
        order.append(name)
    return tuple(order)
