"""Google Gemini CLI adapter."""

from __future__ import annotations

from agent_relay.agents.cli_agent import CliAgent
from agent_relay.agents.rate_limits import GEMINI_LIMIT_PATTERNS


class GeminiAgent(CliAgent):
    """Gemini surfaces quota errors as ``RESOURCE_EXHAUSTED`` or HTTP 429."""

    name = "gemini"
    default_command_template = "gemini --model {model} --approval-mode auto_edit --prompt {prompt}"
    default_model = "gemini-2.5-flash"
    rate_limit_patterns = GEMINI_LIMIT_PATTERNS
    api_key_env_var = "GOOGLE_API_KEY"
