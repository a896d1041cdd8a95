from __future__ import annotations

import shlex
import sys

import allure
import pytest

from agent_relay.agents import (
    COMPLETION_SIGNAL,
    AgentRunError,
    ClaudeAgent,
    InvokeOptions,
    consume_stream,
)
from agent_relay.agents.cli_agent import CANCELLED_EXIT_CODE, TIMEOUT_EXIT_CODE, CliAgent, build_run_args

pytestmark = [
    allure.epic("Agents"),
    allure.feature("CLI Subprocess Adapter"),
]


def _echo_template(*extra: str) -> str:
    base = f"{shlex.quote(sys.executable)} -m agent_relay.agents.echo_agent --prompt-file {{prompt_file}}"
    return " ".join([base, *extra])


def test_build_run_args_quotes_prompt_into_a_single_argument(tmp_path) -> None:
    argv = build_run_args(
        command_template="claude -p --model {model} -- {prompt}",
        model="sonnet",
        prompt="fix it; rm -rf / && echo 'pwned'",
        prompt_file=tmp_path / "prompt.md",
    )

    assert argv == ["claude", "-p", "--model", "sonnet", "--", "fix it; rm -rf / && echo 'pwned'"]


@pytest.mark.parametrize(
    ("template", "model", "message"),
    [
        ("", "sonnet", "is empty"),
        ("claude -p", "sonnet", "must include {prompt} or {prompt_file}"),
        ("claude --model {model} {prompt}", "", "no model was resolved"),
        ("claude {prompt} {unknown}", "sonnet", "Unsupported command template placeholder"),
    ],
)
def test_build_run_args_rejects_unusable_templates(tmp_path, template, model, message) -> None:
    with pytest.raises(AgentRunError, match=message) as error:
        build_run_args(
            command_template=template,
            model=model,
            prompt="hello",
            prompt_file=tmp_path / "prompt.md",
        )

    assert error.value.transient is False


def test_is_installed_checks_template_executable() -> None:
    assert CliAgent(command_template=_echo_template()).is_installed() is True
    assert CliAgent(command_template="definitely-not-a-real-agent-cli {prompt}").is_installed() is False


def test_invoke_streams_output_and_detects_completion(tmp_path) -> None:
    agent = ClaudeAgent(command_template=_echo_template())
    chunks: list[str] = []

    result = consume_stream(
        agent.invoke_stream(
            f"Finish the task.\n{COMPLETION_SIGNAL}\n",
            InvokeOptions(working_directory=tmp_path, timeout_seconds=30),
        ),
        on_chunk=chunks.append,
    )

    assert result.exit_code == 0
    assert result.completed is True
    assert result.timed_out is False
    assert chunks[0] == "echo-agent: prompt received\n"
    assert "".join(chunks) == result.output
    assert "Finish the task." in result.output


def test_invoke_reports_nonzero_exit_without_completion(tmp_path) -> None:
    agent = CliAgent(command_template=_echo_template("--exit-code", "3"))

    result = agent.invoke("no signal here", InvokeOptions(working_directory=tmp_path, timeout_seconds=30))

    assert result.exit_code == 3
    assert result.completed is False


def test_echo_agent_finishes_backlog_item(make_backlog, tmp_path) -> None:
    path = make_backlog([{"id": "US-001", "title": "Only item", "priority": 1}])
    agent = CliAgent(command_template=_echo_template("--backlog", shlex.quote(str(path))))

    result = agent.invoke("work", InvokeOptions(working_directory=tmp_path, timeout_seconds=30))

    assert "echo-agent: finished US-001" in result.output
    assert result.completed is True
    assert '"passes": true' in path.read_text("utf-8")


def test_invoke_times_out_and_terminates(tmp_path) -> None:
    agent = CliAgent(command_template=_echo_template("--sleep", "30"))

    result = agent.invoke("slow", InvokeOptions(working_directory=tmp_path, timeout_seconds=3))

    assert result.timed_out is True
    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert result.duration_seconds < 10
    assert "echo-agent: prompt received" in result.output


def _cancel_after_first_chunk(agent: CliAgent, tmp_path, grace_seconds: float):
    seen: list[str] = []

    def _cancel_requested() -> bool:
        return bool(seen)

    return consume_stream(
        agent.invoke_stream(
            "slow",
            InvokeOptions(
                working_directory=tmp_path,
                timeout_seconds=60,
                cancel_requested=_cancel_requested,
                graceful_shutdown_seconds=grace_seconds,
            ),
        ),
        on_chunk=seen.append,
    )


def test_cancellation_terminates_before_grace_period_elapses(tmp_path) -> None:
    agent = CliAgent(command_template=_echo_template("--sleep", "30"))

    result = _cancel_after_first_chunk(agent, tmp_path, grace_seconds=30)

    assert result.cancelled is True
    assert result.exit_code == CANCELLED_EXIT_CODE
    assert result.duration_seconds < 10


def test_cancellation_kills_agent_that_ignores_terminate(tmp_path) -> None:
    agent = CliAgent(command_template=_echo_template("--sleep", "30", "--ignore-sigterm"))

    result = _cancel_after_first_chunk(agent, tmp_path, grace_seconds=1)

    assert result.cancelled is True
    assert result.exit_code == CANCELLED_EXIT_CODE
    assert 1 <= result.duration_seconds < 10


def test_missing_executable_raises_non_transient_error(tmp_path) -> None:
    agent = CliAgent(command_template="definitely-not-a-real-agent-cli {prompt}")

    with pytest.raises(AgentRunError, match="Agent command not found") as error:
        agent.invoke("hello", InvokeOptions(working_directory=tmp_path))

    assert error.value.transient is False
