"""JSON file store for the backlog.

The file is re-read on every call: the external agent edits it while a run
is in progress (it flips ``passes`` on the items it finishes).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from agent_relay.backlog.models import Backlog, BacklogError, WorkItem
from agent_relay.common import atomic_write_text

logger = logging.getLogger(__name__)

_ITEM_FIELDS = {"id", "title", "description", "priority", "passes", "skipped", "dependencies"}


class BacklogStore:
    """Load, save, and mutate ``backlog.json``."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Backlog:
        try:
            raw_text = self.path.read_text("utf-8")
        except FileNotFoundError as error:
            raise BacklogError(f"Backlog file not found: {self.path}") from error
        except OSError as error:
            raise BacklogError(f"Backlog file unreadable: {self.path}: {error}") from error
        try:
            payload = json.loads(raw_text)
        except json.JSONDecodeError as error:
            raise BacklogError(f"Backlog file is not valid JSON: {self.path}: {error}") from error
        return _parse_backlog(payload, source=self.path)

    def save(self, backlog: Backlog) -> None:
        payload: dict[str, Any] = dict(backlog.extra)
        payload["project"] = backlog.project
        payload["items"] = [_dump_item(item) for item in backlog.items]
        atomic_write_text(self.path, json.dumps(payload, ensure_ascii=False, indent=2) + "\n")

    def mark_skipped(self, item_id: str) -> WorkItem:
        backlog = self.load()
        item = _require(backlog, item_id, self.path)
        item.skipped = True
        self.save(backlog)
        logger.info("Backlog item skipped: %s", item.item_id)
        return item

    def promote(self, item_id: str) -> WorkItem:
        """Move the item ahead of every other item in selection order."""

        backlog = self.load()
        item = _require(backlog, item_id, self.path)
        others = [other.priority for other in backlog.items if other is not item]
        if others and item.priority >= min(others):
            item.priority = min(others) - 1
            self.save(backlog)
        logger.info("Backlog item promoted: %s priority=%d", item.item_id, item.priority)
        return item


def _require(backlog: Backlog, item_id: str, source: Path) -> WorkItem:
    item = backlog.get(item_id)
    if item is None:
        raise KeyError(f"Unknown backlog item {item_id!r} in {source}")
    return item


def _parse_backlog(payload: object, *, source: Path) -> Backlog:
    if not isinstance(payload, dict):
        raise BacklogError(f"Backlog root must be an object: {source}")
    raw_items = payload.get("items")
    if not isinstance(raw_items, list):
        raise BacklogError(f"Backlog must contain an 'items' list: {source}")

    items: list[WorkItem] = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_items):
        item = _parse_item(raw, index=index, source=source)
        key = item.item_id.upper()
        if key in seen:
            raise BacklogError(f"Duplicate backlog item id {item.item_id!r}: {source}")
        seen.add(key)
        items.append(item)

    extra = {key: value for key, value in payload.items() if key not in {"project", "items"}}
    return Backlog(project=str(payload.get("project", "")), items=items, extra=extra)


def _parse_item(raw: object, *, index: int, source: Path) -> WorkItem:
    if not isinstance(raw, dict):
        raise BacklogError(f"Backlog item #{index + 1} must be an object: {source}")
    item_id = raw.get("id")
    if not isinstance(item_id, str) or not item_id.strip():
        raise BacklogError(f"Backlog item #{index + 1} has no id: {source}")
    priority = raw.get("priority", index + 1)
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise BacklogError(f"Backlog item {item_id} has non-integer priority: {source}")
    dependencies = raw.get("dependencies") or []
    if not isinstance(dependencies, list) or not all(isinstance(d, str) for d in dependencies):
        raise BacklogError(f"Backlog item {item_id} has invalid dependencies: {source}")

    return WorkItem(
        item_id=item_id.strip(),
        title=str(raw.get("title", "")),
        description=str(raw.get("description", "")),
        priority=priority,
        passes=bool(raw.get("passes", False)),
        skipped=bool(raw.get("skipped", False)),
        dependencies=tuple(dependencies),
        extra={key: value for key, value in raw.items() if key not in _ITEM_FIELDS},
    )


def _dump_item(item: WorkItem) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": item.item_id,
        "title": item.title,
        "description": item.description,
        "priority": item.priority,
        "passes": item.passes,
    }
    if item.skipped:
        payload["skipped"] = True
    if item.dependencies:
        payload["dependencies"] = list(item.dependencies)
    payload.update(item.extra)
    return payload
