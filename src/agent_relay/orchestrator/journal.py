"""Append-only markdown journal of steering events during a run."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from agent_relay.common import utc_now
from agent_relay.orchestrator.models import RunSummary

logger = logging.getLogger(__name__)


class RunJournal:
    """Write dated event sections to a progress log; a ``None`` path disables it."""

    def __init__(
        self,
        path: Path | None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.path = path
        self._clock = clock

    def pause(self) -> None:
        self._append(
            "Pause Event",
            "User requested pause via [PAUSE] command.\n"
            "The run waited for confirmation before invoking the agent.",
        )

    def resume(self) -> None:
        self._append("Resume Event", "The run resumed after a pause.")

    def abort(self, summary: RunSummary, reason: str | None = None) -> None:
        self._append(
            "Abort Event",
            f"{reason or 'User requested abort via [ABORT] command.'}\n"
            "The run stopped cleanly.\n\n"
            f"- Items: {summary.items_completed}/{summary.items_total} complete\n"
            f"- Iterations: {summary.iterations}\n"
            f"- Duration: {summary.duration_text}",
        )

    def skip(self, item_id: str) -> None:
        self._append("Skip Event", f"Item {item_id} was skipped via [SKIP] command.")

    def skip_rejected(self, item_id: str) -> None:
        self._append(
            "Skip Rejected",
            f"Cannot skip {item_id}: the item is currently in progress.\n"
            "Wait for the current iteration to complete.",
        )

    def priority(self, item_id: str) -> None:
        self._append(
            "Priority Event",
            f"Item {item_id} moved to the front via [PRIORITY] command.",
        )

    def priority_active(self, item_id: str) -> None:
        self._append(
            "Priority Ignored",
            f"Item {item_id} is already in progress; priority unchanged.",
        )

    def guidance(self, prompts: list[str]) -> None:
        lines = "\n".join(f"{index}. {text}" for index, text in enumerate(prompts, start=1))
        self._append("Queued Guidance", f"Added to the next agent prompt:\n\n{lines}")

    def _append(self, title: str, body: str) -> None:
        if self.path is None:
            return
        date = self._clock().date().isoformat()
        entry = f"\n## {title} - {date}\n\n{body}\n\n---\n"
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(entry)
        except OSError as error:
            logger.warning("Could not write progress journal %s: %s", self.path, error)
