"""Autonomous backlog runner for external coding-agent CLIs."""

__version__ = "0.4.0"
