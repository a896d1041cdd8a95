"""Subprocess-backed adapter base for CLI coding agents."""

from __future__ import annotations

import logging
import os
import queue
import shlex
import shutil
import subprocess
import threading
import time
from collections.abc import Callable, Generator
from datetime import datetime
from pathlib import Path
from tempfile import TemporaryDirectory

from agent_relay.agents.base import (
    COMPLETION_SIGNAL,
    AgentResult,
    AgentRunError,
    InvokeOptions,
    RateLimitInfo,
    consume_stream,
)
from agent_relay.agents.rate_limits import GENERIC_LIMIT_PATTERNS, detect_rate_limit
from agent_relay.common import utc_now

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
CANCELLED_EXIT_CODE = 130

_POLL_SECONDS = 0.1
_READER_JOIN_SECONDS = 2.0


class CliAgent:
    """Run one CLI agent per invocation through a command template.

    Templates are shell-like strings with ``{prompt}``, ``{prompt_file}`` and
    ``{model}`` placeholders; values are quoted before the template is split
    into argv, so prompts never go through a shell.
    """

    name = "cli"
    default_command_template = ""
    default_model = ""
    rate_limit_patterns: tuple[str, ...] = GENERIC_LIMIT_PATTERNS
    match_http_429 = True
    api_key_env_var: str | None = None

    def __init__(
        self,
        *,
        command_template: str | None = None,
        default_model: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.command_template = (command_template or self.default_command_template).strip()
        if default_model is not None:
            self.default_model = default_model
        self._clock = clock

    @property
    def executable(self) -> str:
        try:
            argv = shlex.split(self.command_template)
        except ValueError:
            return ""
        return argv[0] if argv else ""

    def is_installed(self) -> bool:
        executable = self.executable
        return bool(executable) and shutil.which(executable) is not None

    def invoke(self, prompt: str, options: InvokeOptions) -> AgentResult:
        return consume_stream(self.invoke_stream(prompt, options))

    def invoke_stream(
        self,
        prompt: str,
        options: InvokeOptions,
    ) -> Generator[str, None, AgentResult]:
        model = options.model or self.default_model
        with TemporaryDirectory(prefix="agent-relay-") as temp_dir:
            prompt_file = Path(temp_dir) / "prompt.md"
            prompt_file.write_text(prompt, "utf-8")
            run_args = build_run_args(
                command_template=self.command_template,
                model=model,
                prompt=prompt,
                prompt_file=prompt_file,
            )
            env = os.environ.copy()
            env["AGENT_RELAY_AGENT"] = self.name
            env["AGENT_RELAY_MODEL"] = model

            logger.info(
                "Invoking agent=%s model=%s timeout=%ss",
                self.name,
                model or "-",
                options.timeout_seconds,
            )
            try:
                process = subprocess.Popen(  # noqa: S603
                    run_args,
                    cwd=options.working_directory,
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                )
            except FileNotFoundError as error:
                raise AgentRunError(
                    f"Agent command not found: {run_args[0]}",
                    transient=False,
                ) from error
            except OSError as error:
                raise AgentRunError(
                    f"Agent failed to start: {error}",
                    transient=True,
                ) from error

            result = yield from _stream_process(process, options)

        result.completed = self.detect_completion(result.output)
        logger.info(
            "Agent finished: agent=%s exit_code=%d timed_out=%s cancelled=%s duration=%.1fs",
            self.name,
            result.exit_code,
            result.timed_out,
            result.cancelled,
            result.duration_seconds,
        )
        return result

    def detect_completion(self, output: str) -> bool:
        return COMPLETION_SIGNAL in output

    def detect_rate_limit(self, output: str) -> RateLimitInfo:
        return detect_rate_limit(
            output,
            patterns=self.rate_limit_patterns,
            now=self._clock().astimezone(),
            match_http_429=self.match_http_429,
        )


def build_run_args(
    *,
    command_template: str,
    model: str,
    prompt: str,
    prompt_file: Path,
) -> list[str]:
    """Render a command template into argv."""

    stripped = command_template.strip()
    if not stripped:
        raise AgentRunError("Agent command template is empty.", transient=False)
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise AgentRunError(
            "Agent command template must include {prompt} or {prompt_file}.",
            transient=False,
        )
    if "{model}" in stripped and not model:
        raise AgentRunError(
            "Agent command template needs {model} but no model was resolved.",
            transient=False,
        )

    try:
        rendered = stripped.format(
            model=shlex.quote(model),
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
        )
    except (KeyError, IndexError) as error:
        raise AgentRunError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise AgentRunError("Agent command template rendered empty command.", transient=False)
    return argv


def _stream_process(
    process: subprocess.Popen[str],
    options: InvokeOptions,
) -> Generator[str, None, AgentResult]:
    chunks: queue.Queue[str | None] = queue.Queue()
    reader = threading.Thread(
        target=_pump_output,
        args=(process, chunks),
        name="agent-output-reader",
        daemon=True,
    )
    reader.start()

    collected: list[str] = []
    start_monotonic = time.monotonic()
    shutdown_deadline: float | None = None
    graceful_seconds = max(0.0, options.graceful_shutdown_seconds)
    timed_out = False
    cancelled = False
    eof = False

    while True:
        try:
            chunk = chunks.get(timeout=_POLL_SECONDS)
        except queue.Empty:
            chunk = None
        else:
            if chunk is None:
                eof = True
            else:
                collected.append(chunk)
                yield chunk

        if eof and process.poll() is not None:
            break

        now = time.monotonic()
        if now - start_monotonic >= options.timeout_seconds:
            logger.warning("Agent timed out after %ss; terminating", options.timeout_seconds)
            _terminate_process(process)
            timed_out = True
            break

        if options.cancel_requested is not None and options.cancel_requested():
            if shutdown_deadline is None:
                logger.info("Cancellation requested; terminating agent, kill after %ss", graceful_seconds)
                cancelled = True
                shutdown_deadline = now + graceful_seconds
                _signal_process(process, kill=False)
            if now >= shutdown_deadline and process.poll() is None:
                logger.warning("Agent still running after %ss grace; killing", graceful_seconds)
                _signal_process(process, kill=True)
                break

    reader.join(timeout=_READER_JOIN_SECONDS)
    while True:
        try:
            chunk = chunks.get_nowait()
        except queue.Empty:
            break
        if chunk is not None:
            collected.append(chunk)
            yield chunk

    if timed_out:
        exit_code = TIMEOUT_EXIT_CODE
    elif cancelled:
        exit_code = CANCELLED_EXIT_CODE
    else:
        exit_code = process.wait()

    return AgentResult(
        output="".join(collected),
        exit_code=exit_code,
        duration_seconds=time.monotonic() - start_monotonic,
        timed_out=timed_out,
        cancelled=cancelled,
    )


def _pump_output(process: subprocess.Popen[str], chunks: queue.Queue[str | None]) -> None:
    stream = process.stdout
    if stream is None:
        chunks.put(None)
        return
    try:
        for line in iter(stream.readline, ""):
            chunks.put(line)
    except (OSError, ValueError):
        logger.debug("Agent output stream closed early", exc_info=True)
    finally:
        chunks.put(None)


def _signal_process(process: subprocess.Popen[str], *, kill: bool) -> None:
    try:
        if kill:
            process.kill()
            process.wait(timeout=2)
        else:
            process.terminate()
    except (OSError, subprocess.TimeoutExpired):
        logger.debug("Could not signal agent process %s", process.pid, exc_info=True)


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
