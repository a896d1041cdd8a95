from __future__ import annotations

import json

import allure
import pytest

from agent_relay.backlog import Backlog, BacklogError, BacklogStore, WorkItem

pytestmark = [
    allure.epic("Backlog"),
    allure.feature("Selection & Mutation"),
]


def _item(item_id: str, priority: int, **fields: object) -> dict[str, object]:
    return {"id": item_id, "title": f"Title {item_id}", "priority": priority, **fields}


def test_next_item_picks_lowest_priority_open_item(make_backlog) -> None:
    path = make_backlog(
        [
            _item("US-001", 1, passes=True),
            _item("US-002", 3),
            _item("US-003", 2),
            _item("US-004", 0, skipped=True),
        ],
    )

    selected = BacklogStore(path).load().next_item()

    assert selected is not None
    assert selected.item_id == "US-003"


def test_next_item_breaks_priority_ties_by_file_order(make_backlog) -> None:
    path = make_backlog([_item("B", 2), _item("A", 2), _item("C", 2)])

    selected = BacklogStore(path).load().next_item()

    assert selected is not None
    assert selected.item_id == "B"


def test_next_item_waits_for_dependencies_to_pass(make_backlog) -> None:
    path = make_backlog(
        [
            _item("US-001", 5),
            _item("US-002", 1, dependencies=["us-001"]),
        ],
    )
    store = BacklogStore(path)

    first = store.load().next_item()
    assert first is not None
    assert first.item_id == "US-001"

    payload = json.loads(path.read_text("utf-8"))
    payload["items"][0]["passes"] = True
    path.write_text(json.dumps(payload), "utf-8")

    second = store.load().next_item()
    assert second is not None
    assert second.item_id == "US-002"


def test_skipped_dependency_does_not_unblock_dependents(make_backlog) -> None:
    path = make_backlog(
        [
            _item("US-001", 1, skipped=True),
            _item("US-002", 2, dependencies=["US-001"]),
        ],
    )

    backlog = BacklogStore(path).load()

    assert backlog.next_item() is None
    assert not backlog.is_finished()


def test_dependency_cycle_is_rejected(make_backlog) -> None:
    path = make_backlog(
        [
            _item("A", 1, dependencies=["B"]),
            _item("B", 2, dependencies=["A"]),
        ],
    )

    with pytest.raises(BacklogError, match="Circular dependency detected: A -> B -> A"):
        BacklogStore(path).load().next_item()


def test_unknown_dependency_is_rejected() -> None:
    backlog = Backlog(
        project="demo",
        items=[WorkItem(item_id="A", title="a", priority=1, dependencies=("GHOST",))],
    )

    with pytest.raises(BacklogError, match="Item A depends on unknown item GHOST"):
        backlog.next_item()


def test_counts_and_finished_state() -> None:
    backlog = Backlog(
        project="demo",
        items=[
            WorkItem(item_id="A", title="a", priority=1, passes=True),
            WorkItem(item_id="B", title="b", priority=2, skipped=True),
            WorkItem(item_id="C", title="c", priority=3),
        ],
    )

    counts = backlog.counts()

    assert (counts.total, counts.completed, counts.skipped, counts.pending) == (3, 1, 1, 1)
    assert not backlog.is_finished()
    backlog.items[2].passes = True
    assert backlog.is_finished()


def test_promote_moves_item_ahead_of_everything(make_backlog) -> None:
    path = make_backlog([_item("US-001", 1), _item("US-002", 2), _item("US-003", 3)])
    store = BacklogStore(path)

    promoted = store.promote("us-003")

    assert promoted.priority == 0
    selected = store.load().next_item()
    assert selected is not None
    assert selected.item_id == "US-003"


def test_promote_keeps_priority_already_lowest(make_backlog) -> None:
    path = make_backlog([_item("US-001", -4), _item("US-002", 2)])

    promoted = BacklogStore(path).promote("US-001")

    assert promoted.priority == -4


def test_mark_skipped_persists_and_rejects_unknown_ids(make_backlog) -> None:
    path = make_backlog([_item("US-001", 1), _item("US-002", 2)])
    store = BacklogStore(path)

    store.mark_skipped("US-001")

    reloaded = store.load()
    skipped = reloaded.get("US-001")
    assert skipped is not None
    assert skipped.skipped is True
    selected = reloaded.next_item()
    assert selected is not None
    assert selected.item_id == "US-002"
    with pytest.raises(KeyError):
        store.mark_skipped("US-999")


def test_save_preserves_unknown_fields(make_backlog) -> None:
    path = make_backlog(
        [_item("US-001", 1, acceptanceCriteria=["works"], notes="keep me")],
        branchName="feature/relay",
    )
    store = BacklogStore(path)

    store.promote("US-001")
    store.mark_skipped("US-001")

    payload = json.loads(path.read_text("utf-8"))
    assert payload["branchName"] == "feature/relay"
    assert payload["project"] == "demo"
    assert payload["items"][0]["acceptanceCriteria"] == ["works"]
    assert payload["items"][0]["notes"] == "keep me"
    assert payload["items"][0]["skipped"] is True


def test_priority_defaults_to_file_position(make_backlog) -> None:
    path = make_backlog([{"id": "A", "title": "a"}, {"id": "B", "title": "b"}])

    backlog = BacklogStore(path).load()

    assert [item.priority for item in backlog.items] == [1, 2]


def test_missing_backlog_file(tmp_path) -> None:
    with pytest.raises(BacklogError, match="Backlog file not found"):
        BacklogStore(tmp_path / "absent.json").load()


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("{not json", "not valid JSON"),
        ("[]", "root must be an object"),
        ('{"items": {}}', "'items' list"),
        ('{"items": [{"title": "no id"}]}', "has no id"),
        ('{"items": [{"id": "A", "priority": "high"}]}', "non-integer priority"),
        ('{"items": [{"id": "A"}, {"id": "a"}]}', "Duplicate backlog item id"),
    ],
)
def test_corrupt_backlog_is_reported(tmp_path, content, message) -> None:
    path = tmp_path / "backlog.json"
    path.write_text(content, "utf-8")

    with pytest.raises(BacklogError, match=message):
        BacklogStore(path).load()
