"""File-backed mailbox: pending queue, processed archive, advisory lock.

Every mutation rewrites the target file through temp-file-and-rename while
holding the mailbox lock, so a concurrent reader never sees a partial file.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from agent_relay.common import atomic_write_text, utc_now
from agent_relay.mailbox.lock import DEFAULT_LOCK_TIMEOUT_SECONDS, MailboxLock
from agent_relay.mailbox.models import (
    DrainedCommand,
    DrainResult,
    MailboxEmptyError,
    MailboxIndexError,
    MailboxItem,
    MailboxLockError,
    MailboxState,
)
from agent_relay.mailbox.parser import (
    build_item,
    format_line,
    format_processed_line,
    parse_line,
)

logger = logging.getLogger(__name__)

PENDING_FILE = ".mailbox.txt"
PROCESSED_FILE = ".mailbox.processed.txt"
LOCK_FILE = ".mailbox.lock"

_LOCK_POLL_SECONDS = 0.05


class Mailbox:
    """Pending/processed queue of human guidance and control commands."""

    def __init__(
        self,
        directory: Path,
        *,
        lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        lock_wait_seconds: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.directory = directory
        self.pending_path = directory / PENDING_FILE
        self.processed_path = directory / PROCESSED_FILE
        self.lock = MailboxLock(
            directory / LOCK_FILE,
            timeout_seconds=lock_timeout_seconds,
            clock=clock,
        )
        self.lock_wait_seconds = (
            lock_wait_seconds if lock_wait_seconds is not None else lock_timeout_seconds * 2
        )
        self._clock = clock

    def acquire_lock(self) -> bool:
        return self.lock.acquire()

    def release_lock(self) -> None:
        self.lock.release()

    def is_locked(self) -> bool:
        return self.lock.is_locked()

    def add(self, content: str) -> MailboxItem:
        """Append one entry; bracketed commands are classified, the rest is guidance."""

        normalized = " ".join(line.strip() for line in content.splitlines() if line.strip())
        if not normalized:
            raise ValueError("Mailbox content must not be empty.")
        item = build_item(content=normalized, added_at=self._clock())

        with self._exclusive():
            existing = _read_text(self.pending_path)
            if existing and not existing.endswith("\n"):
                existing += "\n"
            atomic_write_text(self.pending_path, f"{existing}{format_line(item)}\n")

        logger.info(
            "Mailbox entry added: kind=%s command=%s target=%s",
            item.kind.value,
            item.command.value if item.command else None,
            item.target_id,
        )
        return item

    def drain(self) -> DrainResult:
        """Move every pending entry to the archive and return them split by kind."""

        result = DrainResult()
        with self._exclusive():
            snapshot = _read_text(self.pending_path, result.warnings)
            if not snapshot.strip() and not result.warnings:
                return result

            items = _parse_lines(snapshot, result.warnings)
            processed_at = self._clock()
            for item in items:
                item.processed_at = processed_at
                if item.is_command and item.command is not None:
                    result.commands.append(
                        DrainedCommand(command=item.command, target_id=item.target_id),
                    )
                else:
                    result.prompts.append(item.content)

            if items:
                self._append_processed(items)
            self._truncate_pending(snapshot)

        for warning in result.warnings:
            logger.warning("Mailbox: %s", warning)
        if items:
            logger.info(
                "Mailbox drained: prompts=%d commands=%d",
                len(result.prompts),
                len(result.commands),
            )
        return result

    def load(self) -> MailboxState:
        """Read pending and processed entries without changing anything."""

        warnings: list[str] = []
        pending = _parse_lines(_read_text(self.pending_path, warnings), warnings)
        processed = _parse_lines(_read_text(self.processed_path, warnings), warnings)
        return MailboxState(pending=pending, processed=processed, warnings=warnings)

    def pending(self) -> list[MailboxItem]:
        return self.load().pending

    def remove(self, index: int) -> MailboxItem:
        """Remove the pending entry at 1-based ``index``."""

        with self._exclusive():
            lines = _read_text(self.pending_path).splitlines()
            positions = [pos for pos, line in enumerate(lines) if parse_line(line) is not None]
            if not positions:
                raise MailboxEmptyError("Mailbox is empty: nothing to remove.")
            if index < 1 or index > len(positions):
                raise MailboxIndexError(
                    f"Invalid mailbox index {index}: expected 1..{len(positions)}.",
                )
            line_no = positions[index - 1]
            removed = parse_line(lines[line_no])
            kept = lines[:line_no] + lines[line_no + 1 :]
            atomic_write_text(self.pending_path, _join_lines(kept))

        if removed is None:  # pragma: no cover - positions only hold parseable lines
            raise MailboxIndexError(f"Invalid mailbox index {index}.")
        logger.info("Mailbox entry removed: index=%d content=%r", index, removed.content)
        return removed

    def clear(self) -> int:
        """Drop every pending entry and return how many were removed."""

        with self._exclusive():
            count = len(_parse_lines(_read_text(self.pending_path), []))
            if count == 0:
                raise MailboxEmptyError("Mailbox is empty: nothing to clear.")
            atomic_write_text(self.pending_path, "")

        logger.info("Mailbox cleared: removed=%d", count)
        return count

    def _append_processed(self, items: list[MailboxItem]) -> None:
        existing = _read_text(self.processed_path)
        if existing and not existing.endswith("\n"):
            existing += "\n"
        new_lines = "".join(f"{format_processed_line(item)}\n" for item in items)
        atomic_write_text(self.processed_path, existing + new_lines)

    def _truncate_pending(self, snapshot: str) -> None:
        # Lines written by an uncooperative editor after the snapshot survive.
        current = _read_text(self.pending_path, [])
        consumed = Counter(line for line in snapshot.splitlines() if line.strip())
        survivors: list[str] = []
        for line in current.splitlines():
            if not line.strip():
                continue
            if consumed[line] > 0:
                consumed[line] -= 1
                continue
            survivors.append(line)
        if survivors:
            logger.info("Mailbox: %d entries arrived during drain, kept pending", len(survivors))
        atomic_write_text(self.pending_path, _join_lines(survivors))

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        deadline = time.monotonic() + self.lock_wait_seconds
        while not self.lock.acquire():
            if time.monotonic() >= deadline:
                raise MailboxLockError(
                    f"Mailbox lock is held by another process: {self.lock.path}",
                )
            time.sleep(_LOCK_POLL_SECONDS)
        try:
            yield
        finally:
            self.lock.release()


def _read_text(path: Path, warnings: list[str] | None = None) -> str:
    """Read a mailbox file, dropping lines that are not valid UTF-8."""

    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return ""
    lines: list[str] = []
    for number, raw_line in enumerate(raw.splitlines(keepends=True), start=1):
        try:
            lines.append(raw_line.decode("utf-8"))
        except UnicodeDecodeError:
            message = f"Skipped undecodable line {number} in {path.name}: {raw_line.rstrip()!r}"
            if warnings is None:
                logger.warning("Mailbox: %s", message)
            else:
                warnings.append(message)
    return "".join(lines)


def _parse_lines(text: str, warnings: list[str]) -> list[MailboxItem]:
    items: list[MailboxItem] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        item = parse_line(stripped)
        if item is None:
            warnings.append(f"Skipped malformed line: {stripped}")
            continue
        items.append(item)
    return items


def _join_lines(lines: list[str]) -> str:
    return "".join(f"{line}\n" for line in lines)
