"""Domain models for the work-item backlog."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class BacklogError(RuntimeError):
    """Backlog file is missing, unreadable, or structurally invalid."""


@dataclass(slots=True)
class WorkItem:
    """One unit of work handed to an agent."""

    item_id: str
    title: str
    priority: int
    description: str = ""
    passes: bool = False
    skipped: bool = False
    dependencies: tuple[str, ...] = ()
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return not self.passes and not self.skipped


@dataclass(slots=True)
class BacklogCounts:
    """Item totals used in progress lines and run summaries."""

    total: int
    completed: int
    skipped: int
    pending: int


@dataclass(slots=True)
class Backlog:
    """Ordered work items; order is the tie-breaker for equal priorities."""

    project: str
    items: list[WorkItem]
    extra: dict[str, Any] = field(default_factory=dict)

    def get(self, item_id: str) -> WorkItem | None:
        wanted = item_id.strip().upper()
        for item in self.items:
            if item.item_id.upper() == wanted:
                return item
        return None

    def is_finished(self) -> bool:
        """True when every item either passes or was skipped."""

        return all(not item.is_open for item in self.items)

    def counts(self) -> BacklogCounts:
        total = len(self.items)
        completed = sum(1 for item in self.items if item.passes)
        skipped = sum(1 for item in self.items if item.skipped and not item.passes)
        return BacklogCounts(
            total=total,
            completed=completed,
            skipped=skipped,
            pending=total - completed - skipped,
        )

    def next_item(self) -> WorkItem | None:
        """Lowest-priority open item whose dependencies all pass."""

        validate_dependencies(self)
        passed = {item.item_id.upper() for item in self.items if item.passes}
        eligible = [
            item
            for item in self.items
            if item.is_open and all(dep.upper() in passed for dep in item.dependencies)
        ]
        if not eligible:
            return None
        return sorted(eligible, key=lambda item: item.priority)[0]


def validate_dependencies(backlog: Backlog) -> None:
    """Reject references to unknown items and dependency cycles."""

    by_id = {item.item_id.upper(): item for item in backlog.items}
    for item in backlog.items:
        for dep in item.dependencies:
            if dep.upper() not in by_id:
                raise BacklogError(
                    f"Item {item.item_id} depends on unknown item {dep}",
                )

    done: set[str] = set()

    def _visit(item_id: str, path: list[str]) -> None:
        if item_id in path:
            cycle = " -> ".join([*path[path.index(item_id) :], item_id])
            raise BacklogError(f"Circular dependency detected: {cycle}")
        if item_id in done:
            return
        for dep in by_id[item_id].dependencies:
            _visit(dep.upper(), [*path, item_id])
        done.add(item_id)

    for item_id in by_id:
        _visit(item_id, [])
