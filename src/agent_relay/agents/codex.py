"""OpenAI Codex CLI adapter."""

from __future__ import annotations

from agent_relay.agents.cli_agent import CliAgent
from agent_relay.agents.rate_limits import GENERIC_LIMIT_PATTERNS


class CodexAgent(CliAgent):
    name = "codex"
    default_command_template = "codex exec --sandbox workspace-write -m {model} {prompt}"
    default_model = "gpt-5-codex-mini"
    rate_limit_patterns = GENERIC_LIMIT_PATTERNS
    api_key_env_var = "OPENAI_API_KEY"
