"""Capability contract shared by every coding-agent adapter."""

from __future__ import annotations

from collections.abc import Callable, Generator
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

COMPLETION_SIGNAL = "<promise>COMPLETE</promise>"


class AgentRunError(RuntimeError):
    """Agent execution error with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


@dataclass(slots=True)
class InvokeOptions:
    """Per-invocation knobs passed from the runner to an adapter."""

    working_directory: Path | None = None
    model: str | None = None
    timeout_seconds: float = 600.0
    cancel_requested: Callable[[], bool] | None = None
    graceful_shutdown_seconds: float = 5.0


@dataclass(slots=True)
class AgentResult:
    """Outcome of one agent invocation."""

    output: str
    exit_code: int
    completed: bool = False
    duration_seconds: float = 0.0
    timed_out: bool = False
    cancelled: bool = False


@dataclass(slots=True)
class RateLimitInfo:
    """Rate-limit verdict extracted from agent output."""

    limited: bool
    reset_time: datetime | None = None
    message: str | None = None


NOT_LIMITED = RateLimitInfo(limited=False)


class AgentAdapter(Protocol):
    """Protocol implemented by every coding-agent tool."""

    name: str

    def is_installed(self) -> bool:
        """Return True when the tool can be launched on this host."""

    def invoke(self, prompt: str, options: InvokeOptions) -> AgentResult:
        """Run the agent to completion and return its captured outcome."""

    def detect_completion(self, output: str) -> bool:
        """Return True when output carries the backlog-complete signal."""

    def detect_rate_limit(self, output: str) -> RateLimitInfo:
        """Classify output as rate-limited or not."""


@runtime_checkable
class StreamingAgent(Protocol):
    """Optional capability: yield output chunks while the agent runs."""

    def invoke_stream(
        self,
        prompt: str,
        options: InvokeOptions,
    ) -> Generator[str, None, AgentResult]:
        """Yield output chunks; the generator's return value is the result."""


def consume_stream(
    stream: Generator[str, None, AgentResult],
    on_chunk: Callable[[str], None] | None = None,
) -> AgentResult:
    """Drive a streaming invocation to its end and return the final result."""

    while True:
        try:
            chunk = next(stream)
        except StopIteration as stop:
            result = stop.value
            break
        if on_chunk is not None:
            on_chunk(chunk)
    if not isinstance(result, AgentResult):
        raise AgentRunError("Streaming invocation ended without a result.", transient=False)
    return result
