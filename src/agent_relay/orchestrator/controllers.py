"""Controllers for run and agent CLI commands."""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from agent_relay.agents import AgentRegistry
from agent_relay.backlog import BacklogStore
from agent_relay.config import SUPPORTED_AGENTS, Settings
from agent_relay.mailbox import Mailbox
from agent_relay.orchestrator.fallback import RateLimitTracker, parse_fallback_order
from agent_relay.orchestrator.journal import RunJournal
from agent_relay.orchestrator.models import RunFatalError, RunProgress, RunSummary
from agent_relay.orchestrator.routing import RoutingDefaults, RuleBasedRouter
from agent_relay.orchestrator.runner import OrchestrationRunner

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunCommand:
    """CLI input for one orchestration run."""

    backlog_path: Path | None = None
    prompt_path: Path | None = None
    mailbox_dir: Path | None = None
    progress_log: Path | None = None
    agent: str | None = None
    mode: str | None = None
    max_iterations: int | None = None
    fallback_order: str | None = None
    timeout_seconds: float | None = None
    retry_delay_seconds: float | None = None
    max_rate_limit_wait_seconds: float | None = None
    echo_output: bool | None = None
    command_templates: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class CommandResult:
    """Printable lines plus success flag for the CLI layer."""

    lines: list[str]
    success: bool = True
    error: str | None = None
    exit_code: int = 0


class OrchestratorCliController:
    """Build the runner from settings and render its summary."""

    def __init__(
        self,
        *,
        registry_factory: Callable[[Settings], AgentRegistry] | None = None,
        write: Callable[[str], None] | None = None,
        wait_for_resume: Callable[[], None] | None = None,
    ) -> None:
        self._registry_factory = registry_factory or (
            lambda settings: AgentRegistry.from_settings(settings.agents)
        )
        self._write = write or _write_stdout
        self._wait_for_resume = wait_for_resume or _wait_for_enter

    def run(self, command: RunCommand) -> CommandResult:
        try:
            settings = _settings_for_run(command)
            settings.validate()
        except ValueError as error:
            return CommandResult(lines=[], success=False, error=str(error), exit_code=2)

        runner_settings = settings.runner
        registry = self._registry_factory(settings)
        journal = RunJournal(runner_settings.progress_log_path)
        try:
            runner = OrchestrationRunner(
                backlog=BacklogStore(runner_settings.backlog_path),
                mailbox=Mailbox(
                    settings.mailbox_directory(),
                    lock_timeout_seconds=settings.mailbox.lock_timeout_seconds,
                ),
                registry=registry,
                router=RuleBasedRouter(RoutingDefaults.from_settings(settings.agents)),
                prompt_path=runner_settings.prompt_path,
                agent=runner_settings.agent,
                mode=runner_settings.mode,
                max_iterations=runner_settings.max_iterations,
                iteration_delay_seconds=runner_settings.iteration_delay_seconds,
                retry_delay_seconds=runner_settings.retry_delay_seconds,
                max_rate_limit_wait_seconds=runner_settings.max_rate_limit_wait_seconds,
                fallback_order=runner_settings.fallback_order,
                rate_limits=RateLimitTracker(
                    cooldown_seconds=runner_settings.rate_limit_cooldown_seconds,
                ),
                timeout_seconds=settings.agents.timeout_seconds,
                graceful_shutdown_seconds=settings.agents.graceful_shutdown_seconds,
                working_directory=runner_settings.backlog_path.resolve().parent,
                journal=journal,
                progress_listener=self._progress_printer(echo_output=runner_settings.echo_output),
                wait_for_resume=self._wait_for_resume,
            )
        except ValueError as error:
            return CommandResult(lines=[], success=False, error=str(error), exit_code=2)

        try:
            summary = runner.run()
        except RunFatalError as error:
            lines = _summary_lines(error.summary)
            return CommandResult(lines=lines, success=False, error=str(error), exit_code=1)

        lines = _summary_lines(summary)
        return CommandResult(
            lines=lines,
            success=summary.exit_code == 0,
            error=None if summary.exit_code == 0 else summary.reason,
            exit_code=summary.exit_code,
        )

    def agents(self) -> CommandResult:
        """List configured agents with installation status."""

        try:
            settings = Settings.from_env()
        except ValueError as error:
            return CommandResult(lines=[], success=False, error=str(error), exit_code=2)
        registry = self._registry_factory(settings)
        lines = ["Agents:"]
        for status in registry.statuses():
            state = "installed" if status.installed else "missing"
            keys = "" if status.credentials else " api_key=missing"
            lines.append(
                f"- {status.name}: {state} streaming={'yes' if status.streaming else 'no'}{keys} "
                f"command={status.command or '-'}",
            )
        lines.append(f"Fallback order: {', '.join(settings.runner.fallback_order)}")
        installed = registry.installed()
        return CommandResult(
            lines=lines,
            success=bool(installed),
            error=None if installed else "No supported agent is installed.",
            exit_code=0 if installed else 1,
        )

    def _progress_printer(self, *, echo_output: bool) -> Callable[[RunProgress], None]:
        def _listener(progress: RunProgress) -> None:
            if progress.event == "output":
                if echo_output and progress.chunk:
                    self._write(progress.chunk)
                return
            if progress.event == "iteration_started":
                self._write(
                    f"--- Iteration {progress.iteration}/{progress.max_iterations}: "
                    f"{progress.item_id} {progress.item_title or ''}".rstrip() + "\n",
                )
            elif progress.event == "paused":
                self._write("Paused by user. Press Enter to continue...\n")
                for index, entry in enumerate(progress.pending_items, start=1):
                    self._write(f"  queued {index}: {entry.content}\n")
            elif progress.event.startswith("rate_limited:"):
                agent = progress.event.split(":", 1)[1]
                self._write(f"Rate limited: {agent}. Waiting before retry...\n")

        return _listener


def _settings_for_run(command: RunCommand) -> Settings:
    settings = Settings.from_env()
    runner = settings.runner
    if command.backlog_path is not None:
        runner.backlog_path = command.backlog_path
    if command.prompt_path is not None:
        runner.prompt_path = command.prompt_path
    if command.progress_log is not None:
        runner.progress_log_path = command.progress_log
    if command.agent is not None:
        runner.agent = command.agent.strip().lower()
    if command.mode is not None:
        runner.mode = command.mode.strip().lower()
    if command.max_iterations is not None:
        runner.max_iterations = command.max_iterations
    if command.fallback_order is not None:
        runner.fallback_order = parse_fallback_order(command.fallback_order)
    if command.retry_delay_seconds is not None:
        runner.retry_delay_seconds = command.retry_delay_seconds
    if command.max_rate_limit_wait_seconds is not None:
        runner.max_rate_limit_wait_seconds = command.max_rate_limit_wait_seconds
    if command.echo_output is not None:
        runner.echo_output = command.echo_output
    if command.mailbox_dir is not None:
        settings.mailbox.directory = command.mailbox_dir
    if command.timeout_seconds is not None:
        settings.agents.timeout_seconds = command.timeout_seconds
    for agent, template in command.command_templates.items():
        if agent not in SUPPORTED_AGENTS:
            raise ValueError(f"Unsupported agent for command template: {agent!r}")
        settings.agents.command_templates[agent] = template
    return settings


def _summary_lines(summary: RunSummary) -> list[str]:
    lines = [
        f"Run status: {summary.status.value if summary.status else 'failed'}",
        summary.describe(),
    ]
    if summary.reason:
        lines.append(f"Reason: {summary.reason}")
    lines.extend(f"Message: {message}" for message in summary.messages)
    lines.extend(f"Warning: {warning}" for warning in summary.warnings)
    return lines


def _write_stdout(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def _wait_for_enter() -> None:
    try:
        input()
    except EOFError:
        logger.info("No interactive input available; resuming")
