"""Iteration loop driving backlog items through coding agents."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from agent_relay.agents import (
    AgentAdapter,
    AgentRegistry,
    AgentResult,
    AgentRunError,
    InvokeOptions,
    StreamingAgent,
    consume_stream,
)
from agent_relay.backlog import Backlog, BacklogError, BacklogStore, WorkItem
from agent_relay.config import AUTO_AGENT, DEFAULT_FALLBACK_ORDER
from agent_relay.mailbox import DrainResult, Mailbox, MailboxError, MailboxItem
from agent_relay.orchestrator.commands import PAUSE_MESSAGE, apply_commands
from agent_relay.orchestrator.fallback import RateLimitTracker
from agent_relay.orchestrator.journal import RunJournal
from agent_relay.orchestrator.models import (
    IterationResult,
    RunFatalError,
    RunProgress,
    RunStatus,
    RunSummary,
)
from agent_relay.orchestrator.prompt import compose_prompt, read_template
from agent_relay.orchestrator.routing import RoutingService

logger = logging.getLogger(__name__)

ProgressListener = Callable[[RunProgress], None]


class OrchestrationRunner:
    """Run backlog items through agents until done, capped, or aborted.

    One runner owns one run: its rate-limit bookkeeping, pause state and stop
    flag are instance state and are never shared with other runners.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        backlog: BacklogStore,
        mailbox: Mailbox,
        registry: AgentRegistry,
        router: RoutingService,
        prompt_path: Path,
        agent: str = AUTO_AGENT,
        mode: str = "good",
        max_iterations: int = 20,
        iteration_delay_seconds: float = 2.0,
        retry_delay_seconds: float = 60.0,
        max_rate_limit_wait_seconds: float | None = None,
        fallback_order: tuple[str, ...] = DEFAULT_FALLBACK_ORDER,
        rate_limits: RateLimitTracker | None = None,
        timeout_seconds: float = 600.0,
        graceful_shutdown_seconds: float = 5.0,
        working_directory: Path | None = None,
        journal: RunJournal | None = None,
        progress_listener: ProgressListener | None = None,
        wait_for_resume: Callable[[], None] | None = None,
        handle_signals: bool = True,
    ) -> None:
        agent = agent.strip().lower()
        if agent != AUTO_AGENT and agent not in registry:
            raise ValueError(f"Unknown agent: {agent!r}")
        if max_iterations <= 0:
            raise ValueError("max_iterations must be > 0")
        self.backlog = backlog
        self.mailbox = mailbox
        self.registry = registry
        self.router = router
        self.prompt_path = prompt_path
        self.agent = agent
        self.mode = mode
        self.max_iterations = max_iterations
        self.iteration_delay_seconds = iteration_delay_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self.max_rate_limit_wait_seconds = max_rate_limit_wait_seconds
        self.fallback_order = fallback_order
        self.rate_limits = rate_limits or RateLimitTracker()
        self.timeout_seconds = timeout_seconds
        self.graceful_shutdown_seconds = graceful_shutdown_seconds
        self.working_directory = working_directory
        self.journal = journal or RunJournal(None)
        self.progress_listener = progress_listener
        self.wait_for_resume = wait_for_resume
        self.handle_signals = handle_signals

        self._stop_requested = False
        self._stop_reason: str | None = None
        self._resume_event = threading.Event()
        self._summary = RunSummary()
        self._started_monotonic = 0.0
        self._last_output_monotonic = 0.0
        self._iteration = 0
        self._current_item: WorkItem | None = None
        self._current_agent: str | None = None
        self._last_item_id: str | None = None
        self._pending_items: tuple[MailboxItem, ...] = ()

    def run(self) -> RunSummary:
        """Run until completion, cap exhaustion, abort, or cancellation."""

        if self.handle_signals:
            with self._signal_handlers():
                return self._run()
        return self._run()

    def request_stop(self, reason: str | None = None) -> None:
        """Cancel the run; an in-flight agent invocation is terminated."""

        self._stop_requested = True
        self._stop_reason = reason or "Cancelled by request"
        logger.warning("Stop requested: %s", self._stop_reason)

    def resume(self) -> None:
        """Release a run suspended by a PAUSE command."""

        self._resume_event.set()

    @property
    def summary(self) -> RunSummary:
        return self._summary

    def _run(self) -> RunSummary:  # noqa: C901, PLR0911
        self._summary = RunSummary()
        self._started_monotonic = time.monotonic()
        self._last_output_monotonic = self._started_monotonic
        self._iteration = 0

        base_prompt = self._read_prompt()
        self._ensure_agents_installed()

        while self._iteration < self.max_iterations:
            if self._stop_requested:
                return self._finish_cancelled()

            backlog = self._load_backlog()
            if backlog.is_finished():
                return self._finish(RunStatus.COMPLETED, "All items complete")

            active_item_id = self._active_item_id(backlog)
            drained = self._drain_mailbox()
            outcome = apply_commands(
                drained.commands,
                store=self.backlog,
                active_item_id=active_item_id,
                journal=self.journal,
            )
            self._summary.messages.extend(outcome.messages)
            self._summary.warnings.extend(outcome.warnings)
            if outcome.abort:
                self._load_backlog()
                summary = self._finish(RunStatus.ABORTED, "Aborted by user via [ABORT] command")
                self.journal.abort(summary)
                return summary

            if outcome.skipped or outcome.promoted:
                backlog = self._load_backlog()
            item = self._select(backlog)
            if item is None:
                reason = (
                    "All items complete"
                    if backlog.is_finished()
                    else "No eligible items remain; open items are blocked by dependencies"
                )
                return self._finish(RunStatus.COMPLETED, reason)

            self._current_item = item
            if outcome.pause:
                self._pause()
                if self._stop_requested:
                    return self._finish_cancelled()

            if drained.prompts:
                self.journal.guidance(drained.prompts)
            prompt = compose_prompt(base_prompt, drained.prompts)

            self._iteration += 1
            self._summary.iterations = self._iteration
            logger.info(
                "Iteration %d/%d: item=%s title=%r",
                self._iteration,
                self.max_iterations,
                item.item_id,
                item.title,
            )
            self._emit("iteration_started")

            result = self._work_item(item, prompt)
            self._last_item_id = item.item_id
            if result is None:
                return self._finish_cancelled()
            self._summary.results.append(result)
            if result.cancelled:
                return self._finish_cancelled()
            if result.completed:
                logger.info("Agent reported completion signal")

            if self._iteration < self.max_iterations:
                self._sleep_with_stop(self.iteration_delay_seconds)

        backlog = self._load_backlog()
        if backlog.is_finished():
            return self._finish(RunStatus.COMPLETED, "All items complete")
        return self._finish(
            RunStatus.MAX_ITERATIONS,
            f"Reached max iterations ({self.max_iterations})",
        )

    def _work_item(self, item: WorkItem, prompt: str) -> IterationResult | None:
        """Invoke an agent on ``item``; rate limits retry without using an iteration."""

        waited_seconds = 0.0
        while not self._stop_requested:
            preferred, model = self._resolve_agent(item)
            substitution = self.rate_limits.substitute(
                preferred,
                self.fallback_order,
                is_installed=self.registry.is_installed,
                has_credentials=self.registry.has_credentials,
            )
            agent_name = substitution.agent
            if agent_name is None:
                message = substitution.describe(preferred)
                delay = self.rate_limits.wait_seconds(self.retry_delay_seconds)
                logger.warning("%s; retrying in %.1fs", message, delay)
                waited_seconds = self._wait_for_agent(waited_seconds, message, delay)
                continue

            if agent_name != preferred:
                self._note_fallback(substitution.describe(preferred))
                model = self._substitute_model(agent_name, item)
            adapter = self.registry.get(agent_name)
            self._current_agent = agent_name

            result = self._invoke(adapter, prompt, model)
            if result.cancelled:
                return self._iteration_result(item, agent_name, model, result)

            rate_limit = adapter.detect_rate_limit(result.output)
            if rate_limit.limited:
                state = self.rate_limits.record(agent_name, reset_time=rate_limit.reset_time)
                self._summary.results.append(
                    self._iteration_result(item, agent_name, model, result, rate_limited=True),
                )
                self._summary.messages.append(
                    f"{agent_name} rate limited until "
                    f"{state.available_at(self.rate_limits.cooldown).isoformat()}: "
                    f"{rate_limit.message or 'limit reached'}",
                )
                self._emit(f"rate_limited:{agent_name}")
                waited_seconds = self._wait_for_agent(
                    waited_seconds,
                    f"{agent_name} is rate limited",
                    self.retry_delay_seconds,
                )
                continue

            if result.timed_out:
                self._warn(f"{agent_name} timed out on {item.item_id}")
            elif result.exit_code != 0:
                self._warn(f"{agent_name} exited with code {result.exit_code} on {item.item_id}")
            return self._iteration_result(item, agent_name, model, result)
        return None

    def _resolve_agent(self, item: WorkItem) -> tuple[str, str | None]:
        if self.agent != AUTO_AGENT:
            return self.agent, None
        decision = self.router.decide(item, self.mode)
        logger.debug("Routing %s -> %s/%s", item.item_id, decision.agent, decision.model)
        return decision.agent, decision.model

    def _substitute_model(self, agent: str, item: WorkItem) -> str | None:
        # A pinned agent runs on adapter defaults, and so do its substitutes.
        if self.agent != AUTO_AGENT:
            return None
        return self.router.model_for_agent(agent, item, self.mode)

    def _note_fallback(self, message: str) -> None:
        logger.info(message)
        if not self._summary.messages or self._summary.messages[-1] != message:
            self._summary.messages.append(message)

    def _invoke(self, adapter: AgentAdapter, prompt: str, model: str | None) -> AgentResult:
        options = InvokeOptions(
            working_directory=self.working_directory,
            model=model,
            timeout_seconds=self.timeout_seconds,
            cancel_requested=lambda: self._stop_requested,
            graceful_shutdown_seconds=self.graceful_shutdown_seconds,
        )
        self._last_output_monotonic = time.monotonic()
        try:
            if isinstance(adapter, StreamingAgent):
                return consume_stream(
                    adapter.invoke_stream(prompt, options),
                    on_chunk=self._on_chunk,
                )
            return adapter.invoke(prompt, options)
        except AgentRunError as error:
            logger.warning(
                "Agent %s failed to run (transient=%s): %s",
                adapter.name,
                error.transient,
                error,
            )
            return AgentResult(output=str(error), exit_code=1)

    def _wait_for_agent(self, waited_seconds: float, message: str, delay: float) -> float:
        budget = self.max_rate_limit_wait_seconds
        if budget is not None and waited_seconds + delay > budget:
            self._finalize_summary()
            self._summary.reason = f"Rate-limit wait budget of {budget}s exhausted: {message}"
            raise RunFatalError(self._summary.reason, summary=self._summary)
        self._sleep_with_stop(delay)
        return waited_seconds + delay

    def _pause(self) -> None:
        logger.info("Run paused before invoking the agent")
        self._summary.messages.append(PAUSE_MESSAGE)
        self.journal.pause()
        self._emit("paused")
        if self.wait_for_resume is not None:
            self.wait_for_resume()
        else:
            while not self._stop_requested and not self._resume_event.wait(0.1):
                pass
        self._resume_event.clear()
        if self._stop_requested:
            return
        logger.info("Run resumed")
        self.journal.resume()
        self._emit("resumed")

    def _select(self, backlog: Backlog) -> WorkItem | None:
        try:
            return backlog.next_item()
        except BacklogError as error:
            raise self._fatal(f"Backlog invalid: {error}") from error

    def _active_item_id(self, backlog: Backlog) -> str | None:
        if self._last_item_id is None:
            return None
        item = backlog.get(self._last_item_id)
        if item is None or not item.is_open:
            return None
        return item.item_id

    def _drain_mailbox(self) -> DrainResult:
        try:
            drained = self.mailbox.drain()
        except MailboxError as error:
            self._warn(f"Mailbox unavailable, continuing without it: {error}")
            return DrainResult()
        self._summary.warnings.extend(drained.warnings)
        return drained

    def _load_backlog(self) -> Backlog:
        try:
            backlog = self.backlog.load()
        except BacklogError as error:
            raise self._fatal(str(error)) from error
        counts = backlog.counts()
        self._summary.items_total = counts.total
        self._summary.items_completed = counts.completed
        return backlog

    def _read_prompt(self) -> str:
        try:
            return read_template(self.prompt_path)
        except OSError as error:
            raise self._fatal(
                f"Prompt template unreadable: {self.prompt_path}: {error}",
            ) from error

    def _ensure_agents_installed(self) -> None:
        candidates = list(self.fallback_order)
        if self.agent != AUTO_AGENT and self.agent not in candidates:
            candidates.insert(0, self.agent)
        if not any(self.registry.is_installed(name) for name in candidates):
            raise self._fatal(f"No configured agent is installed: {', '.join(candidates)}")

    def _iteration_result(
        self,
        item: WorkItem,
        agent: str,
        model: str | None,
        result: AgentResult,
        *,
        rate_limited: bool = False,
    ) -> IterationResult:
        return IterationResult(
            iteration=self._iteration,
            item_id=item.item_id,
            agent=agent,
            model=model,
            exit_code=result.exit_code,
            duration_seconds=result.duration_seconds,
            rate_limited=rate_limited,
            completed=result.completed,
            cancelled=result.cancelled,
            timed_out=result.timed_out,
        )

    def _finish(self, status: RunStatus, reason: str) -> RunSummary:
        self._finalize_summary()
        self._summary.status = status
        self._summary.reason = reason
        logger.info("Run finished: status=%s %s", status.value, self._summary.describe())
        self._current_item = None
        self._emit("stopped")
        return self._summary

    def _finish_cancelled(self) -> RunSummary:
        summary = self._finish(RunStatus.ABORTED, self._stop_reason or "Cancelled")
        self.journal.abort(summary, summary.reason)
        return summary

    def _finalize_summary(self) -> None:
        self._summary.duration_ms = int((time.monotonic() - self._started_monotonic) * 1000)

    def _fatal(self, message: str) -> RunFatalError:
        logger.error("Fatal: %s", message)
        self._finalize_summary()
        self._summary.reason = message
        return RunFatalError(message, summary=self._summary)

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self._summary.warnings.append(message)

    def _on_chunk(self, chunk: str) -> None:
        self._last_output_monotonic = time.monotonic()
        self._emit("output", chunk=chunk)

    def _emit(self, event: str, *, chunk: str | None = None) -> None:
        if self.progress_listener is None:
            return
        now = time.monotonic()
        if chunk is None:
            self._pending_items = self._snapshot_mailbox()
        item = self._current_item
        self.progress_listener(
            RunProgress(
                iteration=self._iteration,
                max_iterations=self.max_iterations,
                item_id=item.item_id if item else None,
                item_title=item.title if item else None,
                agent=self._current_agent,
                elapsed_seconds=now - self._started_monotonic,
                idle_seconds=now - self._last_output_monotonic,
                pending_items=self._pending_items,
                limited_agents=self.rate_limits.limited_agents(),
                event=event,
                chunk=chunk,
            ),
        )

    def _snapshot_mailbox(self) -> tuple[MailboxItem, ...]:
        try:
            return tuple(self.mailbox.load().pending)
        except OSError:
            logger.debug("Mailbox snapshot unavailable", exc_info=True)
            return self._pending_items

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(f"Cancelled by {name}")

        try:
            original_sigint = signal.signal(signal.SIGINT, _handler)
            original_sigterm = signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
