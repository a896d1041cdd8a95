"""Apply drained mailbox control commands to the run and the backlog."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from agent_relay.backlog import BacklogStore
from agent_relay.mailbox import DrainedCommand, MailboxCommand
from agent_relay.orchestrator.journal import RunJournal

logger = logging.getLogger(__name__)

PAUSE_MESSAGE = "Paused by user. Press Enter to continue..."
ABORT_MESSAGE = "Aborted by user."


@dataclass(slots=True)
class CommandOutcome:
    """Effect of one batch of control commands."""

    abort: bool = False
    pause: bool = False
    skipped: list[str] = field(default_factory=list)
    promoted: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def apply_commands(
    commands: list[DrainedCommand],
    *,
    store: BacklogStore,
    active_item_id: str | None,
    journal: RunJournal,
) -> CommandOutcome:
    """Apply commands in arrival order; ABORT stops the batch."""

    outcome = CommandOutcome()
    active = active_item_id.upper() if active_item_id else None

    for command in commands:
        if command.command is MailboxCommand.ABORT:
            outcome.abort = True
            outcome.messages.append(ABORT_MESSAGE)
            logger.info("ABORT received")
            break
        if command.command is MailboxCommand.PAUSE:
            outcome.pause = True
            logger.info("PAUSE received")
            continue

        target = (command.target_id or "").upper()
        if command.command is MailboxCommand.SKIP:
            _apply_skip(target, active=active, store=store, journal=journal, outcome=outcome)
        elif command.command is MailboxCommand.PRIORITY:
            _apply_priority(target, active=active, store=store, journal=journal, outcome=outcome)

    return outcome


def _apply_skip(
    target: str,
    *,
    active: str | None,
    store: BacklogStore,
    journal: RunJournal,
    outcome: CommandOutcome,
) -> None:
    if target == active:
        message = f"Cannot skip {target}: item is currently in progress."
        outcome.messages.append(message)
        logger.warning(message)
        journal.skip_rejected(target)
        return

    item = store.load().get(target)
    if item is None:
        _warn(outcome, f"SKIP ignored: unknown item {target}")
        return
    if item.passes:
        _warn(outcome, f"SKIP ignored: item {target} is already complete")
        return

    store.mark_skipped(target)
    outcome.skipped.append(item.item_id)
    outcome.messages.append(f"Skipped {item.item_id}")
    journal.skip(item.item_id)


def _apply_priority(
    target: str,
    *,
    active: str | None,
    store: BacklogStore,
    journal: RunJournal,
    outcome: CommandOutcome,
) -> None:
    if target == active:
        outcome.messages.append(f"{target} is already in progress.")
        logger.info("PRIORITY ignored: %s is already in progress", target)
        journal.priority_active(target)
        return

    item = store.load().get(target)
    if item is None:
        _warn(outcome, f"PRIORITY ignored: unknown item {target}")
        return
    if item.passes:
        _warn(outcome, f"PRIORITY ignored: item {target} is already complete")
        return

    store.promote(target)
    outcome.promoted.append(item.item_id)
    outcome.messages.append(f"Prioritized {item.item_id}")
    journal.priority(item.item_id)


def _warn(outcome: CommandOutcome, message: str) -> None:
    outcome.warnings.append(message)
    logger.warning(message)
