"""Line grammar for mailbox files.

Pending line: ``2026-01-13T10:30:00.000Z | content``
Processed line: ``2026-01-13T10:30:00.000Z | content | processedAt:2026-01-13T10:31:02.117Z``
Command content: ``[PAUSE]``, ``[abort]``, ``[SKIP US-003]``, ``[priority us-004]``
"""

from __future__ import annotations

import re
from datetime import datetime
from itertools import count

from agent_relay.common import from_iso, to_iso
from agent_relay.mailbox.models import (
    COMMANDS_WITH_TARGET,
    MailboxCommand,
    MailboxItem,
    MailboxItemKind,
    ParsedCommand,
)

_ISO_TIMESTAMP = (
    r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d{1,6})?(?:Z|[+-]\d{2}:\d{2})?"
)
_LINE_PATTERN = re.compile(rf"^(?P<timestamp>{_ISO_TIMESTAMP})\s*\|\s*(?P<content>.+)$")
_PROCESSED_AT_PATTERN = re.compile(rf"\s*\|\s*processedAt:(?P<timestamp>{_ISO_TIMESTAMP})$")
_COMMAND_PATTERN = re.compile(r"^\[\s*(?P<name>[A-Za-z]+)(?:\s+(?P<arg>[^\]]+?))?\s*\]$")

_sequence = count(1)


def parse_command(content: str) -> ParsedCommand | None:
    """Match content against the control-command grammar.

    Unknown command names and SKIP/PRIORITY without a target return ``None``,
    so the caller treats the content as plain guidance.
    """

    match = _COMMAND_PATTERN.match(content.strip())
    if match is None:
        return None
    try:
        command = MailboxCommand(match.group("name").upper())
    except ValueError:
        return None

    arg = match.group("arg")
    if command in COMMANDS_WITH_TARGET:
        if not arg or not arg.strip():
            return None
        return ParsedCommand(command=command, target_id=arg.strip().upper())
    return ParsedCommand(command=command)


def build_item(
    *,
    content: str,
    added_at: datetime,
    processed_at: datetime | None = None,
) -> MailboxItem:
    """Classify content and wrap it as a mailbox item."""

    parsed = parse_command(content)
    item_id = f"{to_iso(added_at).replace(':', '-').replace('.', '-')}-{next(_sequence)}"
    if parsed is None:
        return MailboxItem(
            item_id=item_id,
            content=content,
            kind=MailboxItemKind.PROMPT,
            added_at=added_at,
            processed_at=processed_at,
        )
    return MailboxItem(
        item_id=item_id,
        content=content,
        kind=MailboxItemKind.COMMAND,
        added_at=added_at,
        command=parsed.command,
        target_id=parsed.target_id,
        processed_at=processed_at,
    )


def parse_line(line: str) -> MailboxItem | None:
    """Parse one file line; ``None`` means blank or malformed."""

    stripped = line.strip()
    if not stripped:
        return None
    match = _LINE_PATTERN.match(stripped)
    if match is None:
        return None
    try:
        added_at = from_iso(match.group("timestamp"))
    except ValueError:
        return None

    content = match.group("content").strip()
    processed_at: datetime | None = None
    processed_match = _PROCESSED_AT_PATTERN.search(content)
    if processed_match is not None:
        try:
            processed_at = from_iso(processed_match.group("timestamp"))
        except ValueError:
            return None
        content = content[: processed_match.start()].strip()
    if not content:
        return None
    return build_item(content=content, added_at=added_at, processed_at=processed_at)


def format_line(item: MailboxItem) -> str:
    """Render the pending-file form of an item."""

    return f"{to_iso(item.added_at)} | {item.content}"


def format_processed_line(item: MailboxItem) -> str:
    """Render the archive form of an item with its processing stamp."""

    if item.processed_at is None:
        raise ValueError(f"Mailbox item {item.item_id} has no processed_at timestamp.")
    return f"{format_line(item)} | processedAt:{to_iso(item.processed_at)}"
