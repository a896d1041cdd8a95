"""Name-keyed registry of agent adapters."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from agent_relay.agents.base import AgentAdapter, StreamingAgent
from agent_relay.agents.claude import ClaudeAgent
from agent_relay.agents.codex import CodexAgent
from agent_relay.agents.gemini import GeminiAgent
from agent_relay.config import AgentSettings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AgentStatus:
    """Installation snapshot of one registered agent."""

    name: str
    installed: bool
    streaming: bool
    command: str
    credentials: bool = True


class AgentRegistry:
    """Look up adapters by tool name.

    With ``require_api_keys`` an adapter counts as usable for fallback only
    when the environment variable named by its ``api_key_env_var`` is set.
    """

    def __init__(
        self,
        agents: Iterable[AgentAdapter] = (),
        *,
        require_api_keys: bool = False,
    ) -> None:
        self.require_api_keys = require_api_keys
        self._agents: dict[str, AgentAdapter] = {}
        for agent in agents:
            self.register(agent)

    @classmethod
    def from_settings(cls, settings: AgentSettings) -> AgentRegistry:
        """Build the claude/codex/gemini adapters with configured overrides."""

        adapters = []
        for adapter_cls in (ClaudeAgent, CodexAgent, GeminiAgent):
            models = settings.models.get(adapter_cls.name, {})
            adapters.append(
                adapter_cls(
                    command_template=settings.command_templates.get(adapter_cls.name),
                    default_model=models.get("fast"),
                ),
            )
        return cls(adapters, require_api_keys=settings.require_api_keys)

    def register(self, agent: AgentAdapter) -> None:
        name = agent.name.strip().lower()
        if name in self._agents:
            logger.info("Replacing registered agent: %s", name)
        self._agents[name] = agent

    def get(self, name: str) -> AgentAdapter:
        try:
            return self._agents[name.strip().lower()]
        except KeyError as error:
            raise KeyError(
                f"Unknown agent: {name!r}. Registered: {', '.join(self.names()) or '-'}",
            ) from error

    def names(self) -> tuple[str, ...]:
        return tuple(self._agents)

    def is_installed(self, name: str) -> bool:
        agent = self._agents.get(name.strip().lower())
        return agent is not None and agent.is_installed()

    def has_credentials(self, name: str) -> bool:
        """True unless keys are required and the agent's key variable is unset."""

        if not self.require_api_keys:
            return True
        agent = self._agents.get(name.strip().lower())
        env_var = getattr(agent, "api_key_env_var", None)
        return not env_var or bool(os.getenv(env_var, "").strip())

    def installed(self) -> tuple[str, ...]:
        return tuple(name for name, agent in self._agents.items() if agent.is_installed())

    def statuses(self) -> list[AgentStatus]:
        return [
            AgentStatus(
                name=name,
                installed=agent.is_installed(),
                streaming=isinstance(agent, StreamingAgent),
                command=getattr(agent, "command_template", ""),
                credentials=self.has_credentials(name),
            )
            for name, agent in self._agents.items()
        ]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip().lower() in self._agents

    def __iter__(self) -> Iterator[AgentAdapter]:
        return iter(self._agents.values())
