"""Local stand-in for the claude/codex CLIs used by integration tests.

Understands both argument shapes the invocation engine renders and echoes
the prompt back. Behavior is steered through environment variables:

- ``AGENT_RELAY_ECHO_PREFIX``: text prepended to the echoed prompt.
- ``AGENT_RELAY_ECHO_EXIT_CODE``: exit with this code after writing stderr.
- ``AGENT_RELAY_ECHO_STDERR``: stderr text written on failure.
- ``AGENT_RELAY_ECHO_SLEEP``: seconds to sleep before answering.
- ``AGENT_RELAY_ECHO_FAIL_FILE``: file holding a counter; while it is above
  zero the agent decrements it and fails with a connection reset.
- ``AGENT_RELAY_ECHO_ARGV_LOG``: file receiving one JSON line per call with
  argv and cwd.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Answer one prompt the way the configured provider CLI would."""

    args_list = list(sys.argv[1:] if argv is None else argv)
    _log_call(args_list)

    delay = float(os.getenv("AGENT_RELAY_ECHO_SLEEP", "0") or 0)
    if delay > 0:
        time.sleep(delay)

    if _consume_failure():
        sys.stderr.write("read ECONNRESET\n")
        return 1

    exit_code = int(os.getenv("AGENT_RELAY_ECHO_EXIT_CODE", "0") or 0)
    if exit_code:
        sys.stderr.write(os.getenv("AGENT_RELAY_ECHO_STDERR", ""))
        return exit_code

    prefix = os.getenv("AGENT_RELAY_ECHO_PREFIX", "")
    if args_list and args_list[0] == "exec":
        return _codex(args_list[1:], prefix=prefix)
    return _claude(args_list, prefix=prefix)


def _claude(argv: list[str], *, prefix: str) -> int:
    parser = argparse.ArgumentParser(prog="claude")
    parser.add_argument("--dangerously-skip-permissions", action="store_true")
    parser.add_argument("--model", default="")
    parser.add_argument("-c", dest="continue_conversation", action="store_true")
    parser.add_argument("-p", dest="prompt", required=True)
    args = parser.parse_args(argv)
    sys.stdout.write(f"{prefix}{args.prompt}\n")
    return 0


def _codex(argv: list[str], *, prefix: str) -> int:
    resume = argv[:2] == ["resume", "--last"]
    if resume:
        argv = argv[2:]
    parser = argparse.ArgumentParser(prog="codex exec")
    parser.add_argument("--model", default="")
    parser.add_argument("--skip-git-repo-check", action="store_true")
    parser.add_argument("--dangerously-bypass-approvals-and-sandbox", action="store_true")
    parser.add_argument("--json", action="store_true")
    parser.add_argument("prompt")
    args = parser.parse_args(argv)
    records = [
        {"type": "thread.started", "resumed": resume},
        {"type": "item.completed", "item": {"type": "reasoning", "text": "thinking"}},
        {"type": "item.completed", "item": {"type": "agent_message", "text": "draft"}},
        {
            "type": "item.completed",
            "item": {"type": "agent_message", "text": f"{prefix}{args.prompt}"},
        },
        {"type": "turn.completed"},
    ]
    for record in records:
        sys.stdout.write(json.dumps(record) + "\n")
    sys.stdout.write("not json\n")
    return 0


def _consume_failure() -> bool:
    raw_path = os.getenv("AGENT_RELAY_ECHO_FAIL_FILE")
    if not raw_path:
        return False
    path = Path(raw_path)
    try:
        remaining = int(path.read_text("utf-8").strip() or 0)
    except FileNotFoundError:
        return False
    if remaining <= 0:
        return False
    path.write_text(str(remaining - 1), "utf-8")
    return True


def _log_call(argv: list[str]) -> None:
    raw_path = os.getenv("AGENT_RELAY_ECHO_ARGV_LOG")
    if not raw_path:
        return
    with Path(raw_path).open("a", encoding="utf-8") as handle:
        handle.write(json.dumps({"argv": argv, "cwd": os.getcwd()}) + "\n")


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
