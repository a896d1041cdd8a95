"""Coding-agent adapters and their registry."""

from agent_relay.agents.base import (
    COMPLETION_SIGNAL,
    AgentAdapter,
    AgentResult,
    AgentRunError,
    InvokeOptions,
    RateLimitInfo,
    StreamingAgent,
    consume_stream,
)
from agent_relay.agents.claude import ClaudeAgent
from agent_relay.agents.cli_agent import CliAgent
from agent_relay.agents.codex import CodexAgent
from agent_relay.agents.gemini import GeminiAgent
from agent_relay.agents.registry import AgentRegistry, AgentStatus

__all__ = [
    "COMPLETION_SIGNAL",
    "AgentAdapter",
    "AgentRegistry",
    "AgentResult",
    "AgentRunError",
    "AgentStatus",
    "ClaudeAgent",
    "CliAgent",
    "CodexAgent",
    "GeminiAgent",
    "InvokeOptions",
    "RateLimitInfo",
    "StreamingAgent",
    "consume_stream",
]
