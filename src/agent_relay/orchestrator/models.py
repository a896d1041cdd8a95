"""Run-level models for the orchestration loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from agent_relay.mailbox import MailboxItem


class RunStatus(str, Enum):
    """Terminal state of a run."""

    COMPLETED = "completed"
    MAX_ITERATIONS = "max_iterations"
    ABORTED = "aborted"


@dataclass(slots=True)
class IterationResult:
    """What happened in one agent invocation."""

    iteration: int
    item_id: str
    agent: str
    model: str | None
    exit_code: int
    duration_seconds: float
    rate_limited: bool = False
    completed: bool = False
    cancelled: bool = False
    timed_out: bool = False


@dataclass(slots=True)
class RunSummary:
    """Aggregate counters for CLI reporting and the progress journal."""

    status: RunStatus | None = None
    items_completed: int = 0
    items_total: int = 0
    iterations: int = 0
    duration_ms: int = 0
    reason: str | None = None
    results: list[IterationResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 0 if self.status in (RunStatus.COMPLETED, RunStatus.ABORTED) else 1

    @property
    def duration_text(self) -> str:
        total_seconds = self.duration_ms // 1000
        minutes, seconds = divmod(total_seconds, 60)
        return f"{minutes}m {seconds}s" if minutes else f"{total_seconds}s"

    def describe(self) -> str:
        return (
            f"Items: {self.items_completed}/{self.items_total} complete, "
            f"Iterations: {self.iterations}, Duration: {self.duration_text}"
        )


@dataclass(slots=True)
class RunProgress:
    """Point-in-time snapshot for a presentation layer."""

    iteration: int
    max_iterations: int
    item_id: str | None
    item_title: str | None
    agent: str | None
    elapsed_seconds: float
    idle_seconds: float
    pending_items: tuple[MailboxItem, ...]
    limited_agents: tuple[str, ...]
    event: str
    chunk: str | None = None

    @property
    def pending_mailbox(self) -> int:
        return len(self.pending_items)


class RunFatalError(RuntimeError):
    """Unrecoverable run failure; carries the partial summary."""

    def __init__(self, message: str, *, summary: RunSummary) -> None:
        super().__init__(message)
        self.summary = summary
