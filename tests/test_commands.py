from __future__ import annotations

import allure

from agent_relay.backlog import BacklogStore
from agent_relay.mailbox import DrainedCommand, MailboxCommand
from agent_relay.orchestrator.commands import ABORT_MESSAGE, apply_commands
from agent_relay.orchestrator.journal import RunJournal

pytestmark = [
    allure.epic("Orchestrator"),
    allure.feature("Control Commands"),
]


def _items() -> list[dict[str, object]]:
    return [
        {"id": "US-001", "title": "Done", "priority": 1, "passes": True},
        {"id": "US-002", "title": "Active", "priority": 2},
        {"id": "US-003", "title": "Later", "priority": 3},
        {"id": "US-004", "title": "Last", "priority": 4},
    ]


def _command(command: MailboxCommand, target: str | None = None) -> DrainedCommand:
    return DrainedCommand(command=command, target_id=target)


def test_skip_marks_item_and_journals(make_backlog, tmp_path, clock) -> None:
    store = BacklogStore(make_backlog(_items()))
    journal = RunJournal(tmp_path / "progress.md", clock=clock)

    outcome = apply_commands(
        [_command(MailboxCommand.SKIP, "US-003")],
        store=store,
        active_item_id="US-002",
        journal=journal,
    )

    assert outcome.skipped == ["US-003"]
    assert outcome.messages == ["Skipped US-003"]
    skipped = store.load().get("US-003")
    assert skipped is not None
    assert skipped.skipped is True
    assert "## Skip Event" in (tmp_path / "progress.md").read_text("utf-8")


def test_skip_of_active_item_is_rejected_and_journaled(make_backlog, tmp_path, clock) -> None:
    store = BacklogStore(make_backlog(_items()))
    journal = RunJournal(tmp_path / "progress.md", clock=clock)

    outcome = apply_commands(
        [_command(MailboxCommand.SKIP, "US-002")],
        store=store,
        active_item_id="us-002",
        journal=journal,
    )

    assert outcome.skipped == []
    assert outcome.messages == ["Cannot skip US-002: item is currently in progress."]
    active = store.load().get("US-002")
    assert active is not None
    assert active.skipped is False
    assert "## Skip Rejected" in (tmp_path / "progress.md").read_text("utf-8")


def test_unknown_and_completed_targets_only_warn(make_backlog, tmp_path, clock) -> None:
    path = make_backlog(_items())
    before = path.read_text("utf-8")

    outcome = apply_commands(
        [
            _command(MailboxCommand.SKIP, "US-999"),
            _command(MailboxCommand.SKIP, "US-001"),
            _command(MailboxCommand.PRIORITY, "US-404"),
            _command(MailboxCommand.PRIORITY, "US-001"),
        ],
        store=BacklogStore(path),
        active_item_id=None,
        journal=RunJournal(None, clock=clock),
    )

    assert outcome.warnings == [
        "SKIP ignored: unknown item US-999",
        "SKIP ignored: item US-001 is already complete",
        "PRIORITY ignored: unknown item US-404",
        "PRIORITY ignored: item US-001 is already complete",
    ]
    assert path.read_text("utf-8") == before


def test_priority_promotes_target_over_active_item(make_backlog, clock) -> None:
    store = BacklogStore(make_backlog(_items()))

    outcome = apply_commands(
        [_command(MailboxCommand.PRIORITY, "US-004")],
        store=store,
        active_item_id="US-002",
        journal=RunJournal(None, clock=clock),
    )

    assert outcome.promoted == ["US-004"]
    selected = store.load().next_item()
    assert selected is not None
    assert selected.item_id == "US-004"


def test_priority_of_active_item_is_a_no_op(make_backlog, clock) -> None:
    store = BacklogStore(make_backlog(_items()))

    outcome = apply_commands(
        [_command(MailboxCommand.PRIORITY, "US-002")],
        store=store,
        active_item_id="US-002",
        journal=RunJournal(None, clock=clock),
    )

    assert outcome.promoted == []
    assert outcome.messages == ["US-002 is already in progress."]


def test_abort_stops_processing_later_commands(make_backlog, clock) -> None:
    store = BacklogStore(make_backlog(_items()))

    outcome = apply_commands(
        [
            _command(MailboxCommand.PAUSE),
            _command(MailboxCommand.ABORT),
            _command(MailboxCommand.SKIP, "US-003"),
        ],
        store=store,
        active_item_id=None,
        journal=RunJournal(None, clock=clock),
    )

    assert outcome.abort is True
    assert outcome.pause is True
    assert outcome.messages == [ABORT_MESSAGE]
    assert outcome.skipped == []
