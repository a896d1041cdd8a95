"""Domain models for the mid-run mailbox."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class MailboxCommand(str, Enum):
    """Control commands recognized inside mailbox content."""

    PAUSE = "PAUSE"
    ABORT = "ABORT"
    SKIP = "SKIP"
    PRIORITY = "PRIORITY"


COMMANDS_WITH_TARGET: frozenset[MailboxCommand] = frozenset(
    {MailboxCommand.SKIP, MailboxCommand.PRIORITY},
)


class MailboxItemKind(str, Enum):
    """Whether an entry is free-text guidance or a control command."""

    PROMPT = "prompt"
    COMMAND = "command"


@dataclass(slots=True)
class ParsedCommand:
    """Result of matching content against the command grammar."""

    command: MailboxCommand
    target_id: str | None = None


@dataclass(slots=True)
class MailboxItem:
    """One mailbox entry as stored in the pending or processed file."""

    item_id: str
    content: str
    kind: MailboxItemKind
    added_at: datetime
    command: MailboxCommand | None = None
    target_id: str | None = None
    processed_at: datetime | None = None

    @property
    def is_command(self) -> bool:
        return self.kind == MailboxItemKind.COMMAND


@dataclass(slots=True)
class DrainedCommand:
    """Structured command handed to the runner after a drain."""

    command: MailboxCommand
    target_id: str | None = None


@dataclass(slots=True)
class DrainResult:
    """Prompts and commands split by kind, each in arrival order."""

    prompts: list[str] = field(default_factory=list)
    commands: list[DrainedCommand] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.prompts and not self.commands and not self.warnings


@dataclass(slots=True)
class MailboxState:
    """Read-only snapshot of pending and processed entries."""

    pending: list[MailboxItem] = field(default_factory=list)
    processed: list[MailboxItem] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class MailboxError(RuntimeError):
    """Base error for mailbox operations."""


class MailboxEmptyError(MailboxError):
    """Raised when an operation needs pending items and there are none."""


class MailboxIndexError(MailboxError, IndexError):
    """Raised for a 1-based index outside the pending range."""


class MailboxLockError(MailboxError):
    """Raised when the mailbox lock cannot be obtained in time."""
