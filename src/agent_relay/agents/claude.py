"""Claude Code CLI adapter."""

from __future__ import annotations

from agent_relay.agents.cli_agent import CliAgent
from agent_relay.agents.rate_limits import CLAUDE_LIMIT_PATTERNS


class ClaudeAgent(CliAgent):
    """``claude -p`` in non-interactive mode.

    Claude reports its usage cap as ``You've hit your limit · resets 12am``;
    the reset hour is turned into an absolute reset time.
    """

    name = "claude"
    default_command_template = (
        "claude -p --model {model} --dangerously-skip-permissions -- {prompt}"
    )
    default_model = "sonnet"
    rate_limit_patterns = CLAUDE_LIMIT_PATTERNS
    match_http_429 = False
    api_key_env_var = "ANTHROPIC_API_KEY"
