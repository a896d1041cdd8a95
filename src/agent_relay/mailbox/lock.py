"""Advisory lock file that serializes mailbox mutation across processes."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

from agent_relay.common import from_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0


@dataclass(slots=True)
class LockRecord:
    """Contents of the lock file."""

    timestamp: datetime
    owner: int


class MailboxLock:
    """Timestamped lock file; a record older than ``timeout_seconds`` is abandoned."""

    def __init__(
        self,
        path: Path,
        *,
        timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.path = path
        self.timeout_seconds = timeout_seconds
        self._clock = clock

    def acquire(self) -> bool:
        """Take the lock unless a live lock is held; stale locks are replaced."""

        record = self.read()
        if record is not None and not self._is_stale(record):
            return False
        if self.path.exists():
            if record is None:
                logger.warning("Replacing unreadable mailbox lock: %s", self.path)
            else:
                logger.info(
                    "Reclaiming stale mailbox lock: owner=%s age=%.1fs",
                    record.owner,
                    (self._clock() - record.timestamp).total_seconds(),
                )
            self._unlink()
        return self._create()

    def release(self) -> None:
        """Remove the lock file; missing file is fine."""

        self._unlink()

    def is_locked(self) -> bool:
        record = self.read()
        return record is not None and not self._is_stale(record)

    def read(self) -> LockRecord | None:
        try:
            raw = self.path.read_text("utf-8")
        except FileNotFoundError:
            return None
        try:
            payload = json.loads(raw)
            return LockRecord(
                timestamp=from_iso(str(payload["timestamp"])),
                owner=int(payload["pid"]),
            )
        except (ValueError, KeyError, TypeError):
            return None

    def _is_stale(self, record: LockRecord) -> bool:
        age = self._clock() - record.timestamp
        return age >= timedelta(seconds=self.timeout_seconds)

    def _create(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps({"timestamp": to_iso(self._clock()), "pid": os.getpid()})
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
        return True

    def _unlink(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
