from __future__ import annotations

from pathlib import Path

import allure
from click.testing import CliRunner

from agent_relay import __version__
from agent_relay.main import agent_relay

pytestmark = [
    allure.epic("CLI"),
    allure.feature("Run & Queue Commands"),
]


def _items() -> list[dict[str, object]]:
    return [
        {"id": "US-001", "title": "First", "priority": 1},
        {"id": "US-002", "title": "Second", "priority": 2},
    ]


def _run_args(tmp_path: Path, backlog: Path, *extra: str) -> list[str]:
    prompt = tmp_path / "prompt.md"
    prompt.write_text("# Task\n\nWork on the next item.\n", "utf-8")
    return [
        "run",
        "--backlog",
        str(backlog),
        "--prompt",
        str(prompt),
        "--progress-log",
        str(tmp_path / "progress.md"),
        "--no-echo-output",
        *extra,
    ]


def test_version_option() -> None:
    result = CliRunner().invoke(agent_relay, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_queue_add_list_remove_clear(tmp_path: Path) -> None:
    runner = CliRunner()
    mailbox_dir = ["--mailbox-dir", str(tmp_path)]

    added = runner.invoke(agent_relay, ["queue", "add", *mailbox_dir, "Use", "strict", "mode"])
    command = runner.invoke(agent_relay, ["queue", "add", *mailbox_dir, "[skip us-002]"])
    listed = runner.invoke(agent_relay, ["queue", "list", *mailbox_dir])

    assert added.exit_code == 0
    assert "Queued guidance: Use strict mode" in added.output
    assert "Queued command: [SKIP US-002]" in command.output
    assert "Pending (2):" in listed.output
    assert "1. Use strict mode (guidance, added" in listed.output
    assert "2. [SKIP US-002] (command, added" in listed.output

    removed = runner.invoke(agent_relay, ["queue", "remove", *mailbox_dir, "1"])
    assert removed.exit_code == 0
    assert "Removed 1: Use strict mode" in removed.output

    cleared = runner.invoke(agent_relay, ["queue", "clear", *mailbox_dir])
    assert cleared.exit_code == 0
    assert "Cleared 1 pending entry." in cleared.output

    empty = runner.invoke(agent_relay, ["queue", "list", *mailbox_dir])
    assert "Mailbox is empty." in empty.output


def test_queue_remove_out_of_range_fails(tmp_path: Path) -> None:
    runner = CliRunner()
    runner.invoke(agent_relay, ["queue", "add", "--mailbox-dir", str(tmp_path), "only"])

    result = runner.invoke(agent_relay, ["queue", "remove", "--mailbox-dir", str(tmp_path), "4"])

    assert result.exit_code == 1


def test_queue_uses_mailbox_dir_from_env(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("AGENT_RELAY_MAILBOX_DIR", str(tmp_path))

    result = CliRunner().invoke(agent_relay, ["queue", "add", "[PAUSE]"])

    assert result.exit_code == 0
    assert "[PAUSE]" in (tmp_path / ".mailbox.txt").read_text("utf-8")


def test_run_completes_backlog_with_echo_agent(tmp_path: Path, make_backlog, echo_agent) -> None:
    backlog = make_backlog(_items())

    result = CliRunner().invoke(agent_relay, _run_args(tmp_path, backlog))

    assert result.exit_code == 0, result.output
    assert "--- Iteration 1/20: US-001 First" in result.output
    assert "--- Iteration 2/20: US-002 Second" in result.output
    assert "Run status: completed" in result.output
    assert "Items: 2/2 complete, Iterations: 2" in result.output


def test_run_applies_queued_skip_and_guidance(tmp_path: Path, make_backlog, echo_agent) -> None:
    backlog = make_backlog(_items())
    runner = CliRunner()
    runner.invoke(agent_relay, ["queue", "add", "--mailbox-dir", str(tmp_path), "[SKIP US-002]"])
    runner.invoke(agent_relay, ["queue", "add", "--mailbox-dir", str(tmp_path), "Prefer small commits"])

    result = runner.invoke(
        agent_relay,
        _run_args(tmp_path, backlog, "--echo-output"),
    )

    assert result.exit_code == 0, result.output
    assert "Message: Skipped US-002" in result.output
    assert "1. Prefer small commits" in result.output
    assert "Items: 1/2 complete, Iterations: 1" in result.output
    journal = (tmp_path / "progress.md").read_text("utf-8")
    assert "## Skip Event" in journal
    assert "## Queued Guidance" in journal


def test_run_abort_command_exits_cleanly(tmp_path: Path, make_backlog, echo_agent) -> None:
    backlog = make_backlog(_items())
    runner = CliRunner()
    runner.invoke(agent_relay, ["queue", "add", "--mailbox-dir", str(tmp_path), "[ABORT]"])

    result = runner.invoke(agent_relay, _run_args(tmp_path, backlog))

    assert result.exit_code == 0, result.output
    assert "Run status: aborted" in result.output
    assert "Reason: Aborted by user via [ABORT] command" in result.output


def test_run_reports_iteration_cap_as_failure(tmp_path: Path, make_backlog, echo_agent) -> None:
    backlog = make_backlog(_items())

    result = CliRunner().invoke(agent_relay, _run_args(tmp_path, backlog, "--max-iterations", "1"))

    assert result.exit_code == 1
    assert "Run status: max_iterations" in result.output
    assert "Items: 1/2 complete, Iterations: 1" in result.output


def test_run_with_missing_prompt_is_fatal(tmp_path: Path, make_backlog, echo_agent) -> None:
    backlog = make_backlog(_items())
    args = _run_args(tmp_path, backlog)
    args[args.index("--prompt") + 1] = str(tmp_path / "absent.md")

    result = CliRunner().invoke(agent_relay, args)

    assert result.exit_code == 1
    assert "Run status: failed" in result.output
    assert "Reason: Prompt template unreadable" in result.output


def test_run_rejects_malformed_command_template(tmp_path: Path, make_backlog) -> None:
    backlog = make_backlog(_items())

    result = CliRunner().invoke(
        agent_relay,
        _run_args(tmp_path, backlog, "--command-template", "no-equals-sign"),
    )

    assert result.exit_code == 2


def test_agents_lists_installed_agents(echo_agent) -> None:
    result = CliRunner().invoke(agent_relay, ["agents"])

    assert result.exit_code == 0, result.output
    assert "- claude: installed streaming=yes" in result.output
    assert "Fallback order: claude, codex, gemini" in result.output


def test_queue_commands_report_invalid_settings(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("AGENT_RELAY_FALLBACK_ORDER", "claude,copilot")
    runner = CliRunner()

    for args in (["list"], ["clear"], ["remove", "1"], ["add", "hello"]):
        result = runner.invoke(agent_relay, ["queue", *args, "--mailbox-dir", str(tmp_path)])

        assert result.exit_code == 2, args
        assert "Unsupported agent in fallback order" in result.output
        assert result.exception is None or isinstance(result.exception, SystemExit)


def test_agents_reports_invalid_settings(monkeypatch) -> None:
    monkeypatch.setenv("AGENT_RELAY_ECHO_OUTPUT", "maybe")

    result = CliRunner().invoke(agent_relay, ["agents"])

    assert result.exit_code == 2
    assert "Invalid boolean value for AGENT_RELAY_ECHO_OUTPUT" in result.output
