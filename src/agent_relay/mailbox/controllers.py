"""Controllers for ``queue`` CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from agent_relay.config import Settings
from agent_relay.mailbox.models import MailboxError, MailboxItem
from agent_relay.mailbox.store import Mailbox
from agent_relay.orchestrator.controllers import CommandResult


@dataclass(slots=True)
class QueueAddCommand:
    """CLI input for adding guidance or a control command."""

    mailbox_dir: Path | None
    content: str


@dataclass(slots=True)
class QueueListCommand:
    """CLI input for listing mailbox entries."""

    mailbox_dir: Path | None
    show_processed: bool = False


@dataclass(slots=True)
class QueueRemoveCommand:
    """CLI input for removing one pending entry."""

    mailbox_dir: Path | None
    index: int


@dataclass(slots=True)
class QueueClearCommand:
    """CLI input for dropping every pending entry."""

    mailbox_dir: Path | None


class MailboxCliController:
    """Operator-side access to the mailbox of a (possibly running) run."""

    def add(self, command: QueueAddCommand) -> CommandResult:
        try:
            mailbox = _mailbox(command.mailbox_dir)
        except ValueError as error:
            return _config_error(error)
        try:
            item = mailbox.add(command.content)
        except (ValueError, MailboxError) as error:
            return CommandResult(lines=[], success=False, error=str(error), exit_code=1)
        if item.is_command and item.command is not None:
            target = f" {item.target_id}" if item.target_id else ""
            return CommandResult(lines=[f"Queued command: [{item.command.value}{target}]"])
        return CommandResult(lines=[f"Queued guidance: {item.content}"])

    def list_entries(self, command: QueueListCommand) -> CommandResult:
        try:
            state = _mailbox(command.mailbox_dir).load()
        except ValueError as error:
            return _config_error(error)
        lines: list[str] = []
        if not state.pending:
            lines.append("Mailbox is empty.")
        else:
            lines.append(f"Pending ({len(state.pending)}):")
            lines.extend(
                f"{index}. {_describe(item)}" for index, item in enumerate(state.pending, start=1)
            )
        if command.show_processed:
            lines.append(f"Processed ({len(state.processed)}):")
            lines.extend(
                f"- {_describe(item)} (processed {item.processed_at.isoformat()})"
                if item.processed_at
                else f"- {_describe(item)}"
                for item in state.processed
            )
        lines.extend(f"Warning: {warning}" for warning in state.warnings)
        return CommandResult(lines=lines)

    def remove(self, command: QueueRemoveCommand) -> CommandResult:
        try:
            mailbox = _mailbox(command.mailbox_dir)
        except ValueError as error:
            return _config_error(error)
        try:
            item = mailbox.remove(command.index)
        except MailboxError as error:
            return CommandResult(lines=[], success=False, error=str(error), exit_code=1)
        return CommandResult(lines=[f"Removed {command.index}: {item.content}"])

    def clear(self, command: QueueClearCommand) -> CommandResult:
        try:
            mailbox = _mailbox(command.mailbox_dir)
        except ValueError as error:
            return _config_error(error)
        try:
            count = mailbox.clear()
        except MailboxError as error:
            return CommandResult(lines=[], success=False, error=str(error), exit_code=1)
        return CommandResult(lines=[f"Cleared {count} pending entr{'y' if count == 1 else 'ies'}."])


def _mailbox(directory: Path | None) -> Mailbox:
    settings = Settings.from_env()
    if directory is not None:
        settings.mailbox.directory = directory
    return Mailbox(
        settings.mailbox_directory(),
        lock_timeout_seconds=settings.mailbox.lock_timeout_seconds,
    )


def _config_error(error: ValueError) -> CommandResult:
    return CommandResult(lines=[], success=False, error=str(error), exit_code=2)


def _describe(item: MailboxItem) -> str:
    if item.is_command and item.command is not None:
        target = f" {item.target_id}" if item.target_id else ""
        return f"[{item.command.value}{target}] (command, added {item.added_at.isoformat()})"
    return f"{item.content} (guidance, added {item.added_at.isoformat()})"
