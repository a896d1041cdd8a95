"""CLI entrypoint for agent-relay."""

import logging
import os
from pathlib import Path

import rich_click as click

from agent_relay import __version__
from agent_relay.config import SUPPORTED_AGENTS, SUPPORTED_MODES
from agent_relay.mailbox.controllers import (
    MailboxCliController,
    QueueAddCommand,
    QueueClearCommand,
    QueueListCommand,
    QueueRemoveCommand,
)
from agent_relay.orchestrator.controllers import (
    CommandResult,
    OrchestratorCliController,
    RunCommand,
)

click.rich_click.USE_MARKDOWN = True
ORCHESTRATOR_CONTROLLER = OrchestratorCliController()
MAILBOX_CONTROLLER = MailboxCliController()

_MAILBOX_DIR_OPTION = click.option(
    "--mailbox-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding the mailbox files (default: the backlog's directory).",
)


@click.group()
@click.version_option(version=__version__, prog_name="agent-relay")
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (-v info, -vv debug).")
def agent_relay(verbose: int) -> None:
    """Drive a backlog of work items through coding-agent CLIs.

    Steer a running loop with `agent-relay queue add`:
    free text becomes guidance for the next prompt, while
    `[PAUSE]`, `[ABORT]`, `[SKIP ID]` and `[PRIORITY ID]` are control commands.
    """

    _configure_logging(verbose)


@agent_relay.command("run")
@click.option(
    "--backlog",
    "backlog_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Backlog JSON file (default: backlog.json).",
)
@click.option(
    "--prompt",
    "prompt_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Base prompt template (default: prompt.md).",
)
@_MAILBOX_DIR_OPTION
@click.option(
    "--progress-log",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Markdown journal of steering events (default: progress.md).",
)
@click.option(
    "--agent",
    type=click.Choice(["auto", *SUPPORTED_AGENTS], case_sensitive=False),
    default=None,
    help="Pin one agent, or `auto` to route per item.",
)
@click.option(
    "--mode",
    type=click.Choice(SUPPORTED_MODES, case_sensitive=False),
    default=None,
    help="Routing mode used with `--agent auto`.",
)
@click.option(
    "--max-iterations",
    type=click.IntRange(min=1),
    default=None,
    help="Iteration cap (default: 20).",
)
@click.option(
    "--fallback-order",
    default=None,
    help="Comma-separated agents tried when the chosen one is rate limited.",
)
@click.option(
    "--timeout-seconds",
    type=click.FloatRange(min=1),
    default=None,
    help="Per-invocation agent timeout.",
)
@click.option(
    "--retry-delay-seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="Delay before retrying after a rate limit.",
)
@click.option(
    "--max-rate-limit-wait-seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="Give up after waiting this long for a rate-limited agent (default: no limit).",
)
@click.option(
    "--echo-output/--no-echo-output",
    default=None,
    help="Stream agent output to the terminal.",
)
@click.option(
    "--command-template",
    "command_templates",
    multiple=True,
    metavar="AGENT=TEMPLATE",
    help="Override an agent command template, for example `claude=claude -p {prompt}`.",
)
def run(  # noqa: PLR0913
    backlog_path: Path | None,
    prompt_path: Path | None,
    mailbox_dir: Path | None,
    progress_log: Path | None,
    agent: str | None,
    mode: str | None,
    max_iterations: int | None,
    fallback_order: str | None,
    timeout_seconds: float | None,
    retry_delay_seconds: float | None,
    max_rate_limit_wait_seconds: float | None,
    echo_output: bool | None,
    command_templates: tuple[str, ...],
) -> None:
    """Run the orchestration loop until the backlog is done, capped, or aborted."""

    result = ORCHESTRATOR_CONTROLLER.run(
        RunCommand(
            backlog_path=backlog_path,
            prompt_path=prompt_path,
            mailbox_dir=mailbox_dir,
            progress_log=progress_log,
            agent=agent,
            mode=mode,
            max_iterations=max_iterations,
            fallback_order=fallback_order,
            timeout_seconds=timeout_seconds,
            retry_delay_seconds=retry_delay_seconds,
            max_rate_limit_wait_seconds=max_rate_limit_wait_seconds,
            echo_output=echo_output,
            command_templates=_parse_command_templates(command_templates),
        ),
    )
    _finish(result)


@agent_relay.command("agents")
def agents() -> None:
    """Show configured agents and whether they are installed."""

    _finish(ORCHESTRATOR_CONTROLLER.agents())


@agent_relay.group()
def queue() -> None:
    """Mailbox commands for steering a running loop."""


@queue.command("add")
@_MAILBOX_DIR_OPTION
@click.argument("content", nargs=-1, required=True)
def queue_add(mailbox_dir: Path | None, content: tuple[str, ...]) -> None:
    """Queue guidance text or a control command such as `[SKIP US-002]`."""

    _finish(MAILBOX_CONTROLLER.add(QueueAddCommand(mailbox_dir=mailbox_dir, content=" ".join(content))))


@queue.command("list")
@_MAILBOX_DIR_OPTION
@click.option("--processed", "show_processed", is_flag=True, help="Also show processed entries.")
def queue_list(mailbox_dir: Path | None, show_processed: bool) -> None:
    """List pending mailbox entries."""

    _finish(
        MAILBOX_CONTROLLER.list_entries(
            QueueListCommand(mailbox_dir=mailbox_dir, show_processed=show_processed),
        ),
    )


@queue.command("remove")
@_MAILBOX_DIR_OPTION
@click.argument("index", type=int)
def queue_remove(mailbox_dir: Path | None, index: int) -> None:
    """Remove the pending entry at a 1-based INDEX."""

    _finish(MAILBOX_CONTROLLER.remove(QueueRemoveCommand(mailbox_dir=mailbox_dir, index=index)))


@queue.command("clear")
@_MAILBOX_DIR_OPTION
def queue_clear(mailbox_dir: Path | None) -> None:
    """Drop every pending entry."""

    _finish(MAILBOX_CONTROLLER.clear(QueueClearCommand(mailbox_dir=mailbox_dir)))


def _parse_command_templates(values: tuple[str, ...]) -> dict[str, str]:
    templates: dict[str, str] = {}
    for value in values:
        agent, sep, template = value.partition("=")
        if not sep or not agent.strip() or not template.strip():
            raise click.BadParameter(
                f"Expected AGENT=TEMPLATE, got {value!r}",
                param_hint="--command-template",
            )
        templates[agent.strip().lower()] = template.strip()
    return templates


def _configure_logging(verbose: int) -> None:
    if verbose >= 2:  # noqa: PLR2004
        level = "DEBUG"
    elif verbose == 1:
        level = "INFO"
    else:
        level = os.getenv("AGENT_RELAY_LOG_LEVEL", "WARNING").strip().upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _finish(result: CommandResult) -> None:
    _emit_lines(result.lines)
    if not result.success:
        error = click.ClickException(result.error or "Command failed.")
        error.exit_code = result.exit_code or 1
        raise error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_relay()
