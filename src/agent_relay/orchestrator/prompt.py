"""Prompt composition for agent invocations."""

from __future__ import annotations

from pathlib import Path

GUIDANCE_HEADER = "## Queued User Guidance"


def read_template(path: Path) -> str:
    return path.read_text("utf-8")


def compose_prompt(base: str, guidance: list[str]) -> str:
    """Append drained guidance as a numbered section.

    With no guidance the base template is returned unchanged.
    """

    if not guidance:
        return base
    numbered = "\n".join(f"{index}. {text}" for index, text in enumerate(guidance, start=1))
    return (
        f"{base.rstrip()}\n\n"
        f"{GUIDANCE_HEADER}\n\n"
        "The user added these instructions while the run was in progress. "
        "Take them into account for this iteration:\n\n"
        f"{numbered}\n"
    )
