"""Runtime configuration for the orchestration runner, mailbox, and agents."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

SUPPORTED_AGENTS = ("claude", "codex", "gemini")
DEFAULT_FALLBACK_ORDER = ("claude", "codex", "gemini")
SUPPORTED_MODES = ("free", "cheap", "good", "genius")
AUTO_AGENT = "auto"


@dataclass(slots=True)
class RunnerSettings:
    """Iteration loop settings."""

    backlog_path: Path = Path("backlog.json")
    prompt_path: Path = Path("prompt.md")
    progress_log_path: Path | None = Path("progress.md")
    agent: str = AUTO_AGENT
    mode: str = "good"
    max_iterations: int = 20
    iteration_delay_seconds: float = 2.0
    retry_delay_seconds: float = 60.0
    rate_limit_cooldown_seconds: float = 3_600.0
    max_rate_limit_wait_seconds: float | None = None
    fallback_order: tuple[str, ...] = DEFAULT_FALLBACK_ORDER
    echo_output: bool = True


@dataclass(slots=True)
class MailboxSettings:
    """Mailbox file location and lock behaviour.

    A missing directory means the directory holding the backlog file.
    """

    directory: Path | None = None
    lock_timeout_seconds: float = 5.0


@dataclass(slots=True)
class AgentSettings:
    """Command templates and models for the CLI agents."""

    timeout_seconds: float = 600.0
    graceful_shutdown_seconds: float = 5.0
    require_api_keys: bool = False
    command_templates: dict[str, str] = field(default_factory=dict)
    models: dict[str, dict[str, str]] = field(
        default_factory=lambda: {
            "claude": {"fast": "sonnet", "quality": "opus"},
            "codex": {"fast": "gpt-5-codex-mini", "quality": "gpt-5-codex"},
            "gemini": {"fast": "gemini-2.5-flash", "quality": "gemini-2.5-pro"},
        },
    )


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    runner: RunnerSettings = field(default_factory=RunnerSettings)
    mailbox: MailboxSettings = field(default_factory=MailboxSettings)
    agents: AgentSettings = field(default_factory=AgentSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from ``AGENT_RELAY_*`` environment variables."""

        from agent_relay.orchestrator.fallback import parse_fallback_order

        defaults = AgentSettings()
        return cls(
            runner=RunnerSettings(
                backlog_path=Path(os.getenv("AGENT_RELAY_BACKLOG_PATH", "backlog.json")),
                prompt_path=Path(os.getenv("AGENT_RELAY_PROMPT_PATH", "prompt.md")),
                progress_log_path=_env_optional_path("AGENT_RELAY_PROGRESS_LOG", "progress.md"),
                agent=os.getenv("AGENT_RELAY_AGENT", AUTO_AGENT).strip().lower(),
                mode=os.getenv("AGENT_RELAY_MODE", "good").strip().lower(),
                max_iterations=int(os.getenv("AGENT_RELAY_MAX_ITERATIONS", "20")),
                iteration_delay_seconds=float(
                    os.getenv("AGENT_RELAY_ITERATION_DELAY_SECONDS", "2.0"),
                ),
                retry_delay_seconds=float(os.getenv("AGENT_RELAY_RETRY_DELAY_SECONDS", "60.0")),
                rate_limit_cooldown_seconds=float(
                    os.getenv("AGENT_RELAY_RATE_LIMIT_COOLDOWN_SECONDS", "3600"),
                ),
                max_rate_limit_wait_seconds=_env_optional_float(
                    "AGENT_RELAY_MAX_RATE_LIMIT_WAIT_SECONDS",
                ),
                fallback_order=parse_fallback_order(os.getenv("AGENT_RELAY_FALLBACK_ORDER")),
                echo_output=_env_bool("AGENT_RELAY_ECHO_OUTPUT", default=True),
            ),
            mailbox=MailboxSettings(
                directory=_env_optional_path("AGENT_RELAY_MAILBOX_DIR", ""),
                lock_timeout_seconds=float(
                    os.getenv("AGENT_RELAY_MAILBOX_LOCK_TIMEOUT_SECONDS", "5.0"),
                ),
            ),
            agents=AgentSettings(
                timeout_seconds=float(os.getenv("AGENT_RELAY_AGENT_TIMEOUT_SECONDS", "600")),
                graceful_shutdown_seconds=float(
                    os.getenv("AGENT_RELAY_GRACEFUL_SHUTDOWN_SECONDS", "5.0"),
                ),
                require_api_keys=_env_bool("AGENT_RELAY_REQUIRE_API_KEYS", default=False),
                command_templates=_collect_command_templates(),
                models=_collect_models(defaults.models),
            ),
        )

    def mailbox_directory(self) -> Path:
        return self.mailbox.directory or self.runner.backlog_path.resolve().parent

    def validate(self) -> None:
        """Raise configuration error for values the runner cannot work with."""

        runner = self.runner
        if runner.max_iterations <= 0:
            raise ValueError("AGENT_RELAY_MAX_ITERATIONS must be > 0.")
        if runner.iteration_delay_seconds < 0:
            raise ValueError("AGENT_RELAY_ITERATION_DELAY_SECONDS must be >= 0.")
        if runner.retry_delay_seconds < 0:
            raise ValueError("AGENT_RELAY_RETRY_DELAY_SECONDS must be >= 0.")
        if runner.rate_limit_cooldown_seconds <= 0:
            raise ValueError("AGENT_RELAY_RATE_LIMIT_COOLDOWN_SECONDS must be > 0.")
        if runner.max_rate_limit_wait_seconds is not None and runner.max_rate_limit_wait_seconds < 0:
            raise ValueError("AGENT_RELAY_MAX_RATE_LIMIT_WAIT_SECONDS must be >= 0.")
        if runner.agent != AUTO_AGENT and runner.agent not in SUPPORTED_AGENTS:
            raise ValueError(
                f"Unsupported AGENT_RELAY_AGENT: {runner.agent!r}. "
                f"Use auto or one of {', '.join(SUPPORTED_AGENTS)}.",
            )
        if runner.mode not in SUPPORTED_MODES:
            raise ValueError(
                f"Unsupported AGENT_RELAY_MODE: {runner.mode!r}. "
                f"Use one of {', '.join(SUPPORTED_MODES)}.",
            )
        if self.mailbox.lock_timeout_seconds <= 0:
            raise ValueError("AGENT_RELAY_MAILBOX_LOCK_TIMEOUT_SECONDS must be > 0.")
        if self.agents.timeout_seconds <= 0:
            raise ValueError("AGENT_RELAY_AGENT_TIMEOUT_SECONDS must be > 0.")
        if self.agents.graceful_shutdown_seconds < 0:
            raise ValueError("AGENT_RELAY_GRACEFUL_SHUTDOWN_SECONDS must be >= 0.")
        for agent, template in self.agents.command_templates.items():
            if not template.strip():
                raise ValueError(f"Empty command template for agent={agent!r}")


def _collect_command_templates() -> dict[str, str]:
    templates: dict[str, str] = {}
    for agent in SUPPORTED_AGENTS:
        value = os.getenv(f"AGENT_RELAY_{agent.upper()}_COMMAND_TEMPLATE")
        if value is not None:
            templates[agent] = value
    return templates


def _collect_models(defaults: dict[str, dict[str, str]]) -> dict[str, dict[str, str]]:
    models: dict[str, dict[str, str]] = {}
    for agent, profiles in defaults.items():
        models[agent] = {
            profile: os.getenv(f"AGENT_RELAY_{agent.upper()}_MODEL_{profile.upper()}", model)
            for profile, model in profiles.items()
        }
    return models


def _env_optional_path(name: str, default: str) -> Path | None:
    value = os.getenv(name, default).strip()
    return Path(value) if value else None


def _env_optional_float(name: str) -> float | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid number for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
