"""Process runner interface used by the invocation engine."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(slots=True)
class ProcessRunRequest:
    """Inputs required to run one agent CLI process."""

    argv: list[str]
    timeout_seconds: float
    cwd: Path | None = None
    stdin_text: str | None = None
    env: dict[str, str] | None = None


@dataclass(slots=True)
class ProcessRunResult:
    """Execution outcome from a process runner."""

    exit_code: int
    timed_out: bool
    stdout: str
    stderr: str
    elapsed_seconds: float


class ProcessRunner(Protocol):
    """Protocol implemented by process runners."""

    def run(self, request: ProcessRunRequest) -> ProcessRunResult:
        """Run one process to completion or timeout and return its output."""
