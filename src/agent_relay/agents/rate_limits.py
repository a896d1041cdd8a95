"""Deterministic rate-limit detection over agent output."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from agent_relay.agents.base import NOT_LIMITED, RateLimitInfo

logger = logging.getLogger(__name__)

CLAUDE_LIMIT_PATTERNS: tuple[str, ...] = (
    "you've hit your limit",
    "you have hit your limit",
    "usage limit reached",
)
GENERIC_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit exceeded",
    "too many requests",
    "quota exceeded",
)
GEMINI_LIMIT_PATTERNS: tuple[str, ...] = (
    *GENERIC_LIMIT_PATTERNS,
    "resource_exhausted",
)

_HTTP_429_RE = re.compile(r"\b429\b")
_RESETS_AT_RE = re.compile(
    r"resets\s+(?:at\s+)?(\d{1,2})(?::(\d{2}))?\s*(am|pm)(?:\s*\(([^)]+)\))?",
    re.IGNORECASE,
)
_RETRY_IN_RE = re.compile(
    r"try again in\s+(\d+(?:\.\d+)?)\s*(seconds?|secs?|s|minutes?|mins?|m|hours?|hrs?|h)\b",
    re.IGNORECASE,
)


def detect_rate_limit(
    output: str,
    *,
    patterns: tuple[str, ...],
    now: datetime,
    match_http_429: bool = True,
) -> RateLimitInfo:
    """Match output against ``patterns`` and extract a reset time if one is given."""

    if not output:
        return NOT_LIMITED
    haystack = output.lower()
    matched = _first_match(haystack, patterns)
    if matched is None and match_http_429 and _HTTP_429_RE.search(output):
        matched = "429"
    if matched is None:
        return NOT_LIMITED

    reset_time = parse_reset_clock(output, now) or parse_retry_after(output, now)
    message = _matching_line(output, matched)
    logger.debug("Rate limit detected: pattern=%r reset_time=%s", matched, reset_time)
    return RateLimitInfo(limited=True, reset_time=reset_time, message=message)


def parse_reset_clock(text: str, now: datetime) -> datetime | None:
    """Resolve ``resets 12am`` style hints to the next such wall-clock instant.

    The hour is interpreted in the zone named in parentheses when present,
    otherwise in ``now``'s own timezone. A time that already passed today
    rolls over to tomorrow.
    """

    match = _RESETS_AT_RE.search(text)
    if match is None:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    if not 1 <= hour <= 12 or minute > 59:  # noqa: PLR2004
        return None
    meridiem = match.group(3).lower()
    hour = hour % 12 + (12 if meridiem == "pm" else 0)

    local_now = now
    zone_name = match.group(4)
    if zone_name:
        try:
            local_now = now.astimezone(ZoneInfo(zone_name.strip()))
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug("Unknown timezone in reset hint: %r", zone_name)

    candidate = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= local_now:
        candidate += timedelta(days=1)
    return candidate.astimezone(now.tzinfo)


def parse_retry_after(text: str, now: datetime) -> datetime | None:
    """Resolve ``try again in N seconds/minutes/hours`` relative to ``now``."""

    match = _RETRY_IN_RE.search(text)
    if match is None:
        return None
    amount = float(match.group(1))
    unit = match.group(2).lower()
    if unit.startswith("h"):
        delta = timedelta(hours=amount)
    elif unit.startswith("m"):
        delta = timedelta(minutes=amount)
    else:
        delta = timedelta(seconds=amount)
    return now + delta


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None


def _matching_line(output: str, pattern: str) -> str:
    for line in output.splitlines():
        if pattern in line.lower():
            return line.strip()
    return pattern
