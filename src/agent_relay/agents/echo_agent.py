"""Local deterministic agent for CLI adapter and runner integration tests."""

from __future__ import annotations

import argparse
import signal
import sys
import time
from pathlib import Path

from agent_relay.agents.base import COMPLETION_SIGNAL
from agent_relay.backlog import BacklogStore

DEFAULT_RATE_LIMIT_MESSAGE = "Error: 429 Too Many Requests. Rate limit exceeded, try again in 1 seconds."


def main(argv: list[str] | None = None) -> int:
    """Echo the prompt and optionally finish one backlog item."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file", required=True)
    parser.add_argument("--backlog")
    parser.add_argument("--rate-limit-once")
    parser.add_argument("--rate-limit-message", default=DEFAULT_RATE_LIMIT_MESSAGE)
    parser.add_argument("--sleep", type=float, default=0.0)
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--ignore-sigterm", action="store_true")
    args = parser.parse_args(argv)

    if args.ignore_sigterm:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    prompt = Path(args.prompt_file).read_text("utf-8")
    print("echo-agent: prompt received", flush=True)
    print(prompt, flush=True)

    if args.rate_limit_once:
        marker = Path(args.rate_limit_once)
        if not marker.exists():
            marker.write_text("limited\n", "utf-8")
            print(args.rate_limit_message, flush=True)
            return 1

    if args.sleep > 0:
        time.sleep(args.sleep)

    if args.backlog:
        store = BacklogStore(Path(args.backlog))
        backlog = store.load()
        item = backlog.next_item()
        if item is not None:
            item.passes = True
            store.save(backlog)
            print(f"echo-agent: finished {item.item_id}", flush=True)
        if backlog.is_finished():
            print(COMPLETION_SIGNAL, flush=True)

    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
