"""Shared test fixtures."""

from __future__ import annotations

import json
import os
import shlex
import sys
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

ECHO_AGENT_COMMAND = (
    f"{shlex.quote(sys.executable)} -m agent_relay.agents.echo_agent --prompt-file {{prompt_file}}"
)


class FakeClock:
    """Deterministic clock injected where wall-clock time matters."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 13, 10, 30, tzinfo=UTC))


@pytest.fixture()
def make_backlog(tmp_path: Path) -> Callable[..., Path]:
    """Write ``backlog.json`` under tmp_path from a list of item dicts."""

    def _make(items: list[dict[str, object]], **extra: object) -> Path:
        path = tmp_path / "backlog.json"
        payload: dict[str, object] = {"project": "demo", **extra, "items": items}
        path.write_text(json.dumps(payload, indent=2), "utf-8")
        return path

    return _make


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch) -> None:
    for name in list(os.environ):
        if name.startswith("AGENT_RELAY_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def echo_agent(monkeypatch, tmp_path: Path) -> str:
    """Point every agent at the local echo agent, which finishes one backlog item per call."""

    backlog_path = tmp_path / "backlog.json"
    command = f"{ECHO_AGENT_COMMAND} --backlog {shlex.quote(str(backlog_path))}"
    for agent in ("claude", "codex", "gemini"):
        monkeypatch.setenv(f"AGENT_RELAY_{agent.upper()}_COMMAND_TEMPLATE", command)
    monkeypatch.setenv("AGENT_RELAY_ITERATION_DELAY_SECONDS", "0")
    monkeypatch.setenv("AGENT_RELAY_RETRY_DELAY_SECONDS", "0")
    return command
