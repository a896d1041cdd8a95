"""Orchestration loop: runner, control commands, fallback, and routing."""
