"""Backlog of work items driven through the agents."""

from agent_relay.backlog.models import (
    Backlog,
    BacklogCounts,
    BacklogError,
    WorkItem,
    validate_dependencies,
)
from agent_relay.backlog.store import BacklogStore

__all__ = [
    "Backlog",
    "BacklogCounts",
    "BacklogError",
    "BacklogStore",
    "WorkItem",
    "validate_dependencies",
]
