"""Subprocess-based runner for CLI agents."""

from __future__ import annotations

import contextlib
import logging
import os
import subprocess
import tempfile
import time
from typing import IO, ContextManager

from agent_relay.orchestrator.backend.base import ProcessRunRequest, ProcessRunResult
from agent_relay.orchestrator.errors import InvocationError
from agent_relay.orchestrator.models import FailureClass

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
_POLL_SECONDS = 0.05


class SubprocessRunner:
    """Run one process with captured output and a hard time budget.

    Output goes to anonymous temp files rather than pipes, so a chatty agent
    can never block on a full pipe while the runner is polling.
    """

    def __init__(self, *, poll_seconds: float = _POLL_SECONDS) -> None:
        self.poll_seconds = poll_seconds

    def run(self, request: ProcessRunRequest) -> ProcessRunResult:
        if not request.argv:
            raise InvocationError(
                "Agent command rendered empty argv.",
                failure_class=FailureClass.CONFIGURATION,
            )
        env = os.environ.copy()
        if request.env:
            env.update(request.env)

        # Agents may emit bytes that are not UTF-8; undecodable bytes become U+FFFD.
        with (
            _capture_file() as stdout_handle,
            _capture_file() as stderr_handle,
            _stdin_handle(request.stdin_text) as stdin_handle,
        ):
            try:
                process = subprocess.Popen(  # noqa: S603
                    request.argv,
                    cwd=request.cwd,
                    env=env,
                    stdin=stdin_handle if stdin_handle is not None else subprocess.DEVNULL,
                    stdout=stdout_handle,
                    stderr=stderr_handle,
                    text=True,
                )
            except FileNotFoundError as error:
                raise InvocationError(
                    f"Agent command not found: {request.argv[0]}",
                    failure_class=FailureClass.CONFIGURATION,
                ) from error
            except OSError as error:
                raise InvocationError(
                    f"Agent command failed to start: {error}",
                    failure_class=FailureClass.TRANSIENT,
                ) from error

            exit_code, timed_out, elapsed = self._wait(process, request.timeout_seconds)
            return ProcessRunResult(
                exit_code=exit_code,
                timed_out=timed_out,
                stdout=_read_all(stdout_handle),
                stderr=_read_all(stderr_handle),
                elapsed_seconds=elapsed,
            )

    def _wait(
        self,
        process: subprocess.Popen[str],
        timeout_seconds: float,
    ) -> tuple[int, bool, float]:
        start_monotonic = time.monotonic()
        while True:
            returncode = process.poll()
            elapsed = time.monotonic() - start_monotonic
            if returncode is not None:
                return returncode, False, elapsed
            if elapsed >= timeout_seconds:
                _kill_process(process)
                return TIMEOUT_EXIT_CODE, True, elapsed
            time.sleep(self.poll_seconds)


def _capture_file() -> IO[str]:
    return tempfile.TemporaryFile(mode="w+", encoding="utf-8", errors="replace")


def _stdin_handle(text: str | None) -> ContextManager[IO[str] | None]:
    if text is None:
        return contextlib.nullcontext()
    handle = tempfile.TemporaryFile(mode="w+", encoding="utf-8")
    handle.write(text)
    handle.flush()
    handle.seek(0)
    return handle


def _read_all(handle: IO[str]) -> str:
    handle.flush()
    handle.seek(0)
    return handle.read()


def _kill_process(process: subprocess.Popen[str]) -> None:
    """Send SIGKILL without waiting for the process to exit."""

    try:
        process.kill()
    except OSError as error:
        logger.debug("Kill of pid %s failed: %s", process.pid, error)
