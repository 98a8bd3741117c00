"""Shared test fixtures."""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from agent_relay.config import InvocationSettings
from agent_relay.orchestrator.backend import ProcessRunRequest, ProcessRunResult
from agent_relay.orchestrator.models import AgentDescriptor

ECHO_AGENT_COMMAND = (sys.executable, "-m", "agent_relay.orchestrator.backend.echo_agent")
SRC_DIR = Path(__file__).resolve().parents[1] / "src"


class FakeRunner:
    """Process runner that records requests and replays canned results."""

    def __init__(self, results: list[ProcessRunResult] | None = None) -> None:
        self.requests: list[ProcessRunRequest] = []
        self._results = list(results or [])

    def run(self, request: ProcessRunRequest) -> ProcessRunResult:
        self.requests.append(request)
        if self._results:
            return self._results.pop(0)
        return ok_result("")


class FakeEngine:
    """Stands in for ``InvocationEngine`` and records every call."""

    def __init__(self, respond: Callable[[AgentDescriptor, str], str] | None = None) -> None:
        self.calls: list[tuple[str, str, bool]] = []
        self._respond = respond or (lambda agent, message: f"{agent.agent_id}:{message}")

    def invoke(
        self,
        agent: AgentDescriptor,
        message: str,
        *,
        working_dir: str | None = None,
        reset: bool = False,
    ) -> str:
        self.calls.append((agent.agent_id, message, reset))
        return self._respond(agent, message)


def ok_result(stdout: str, *, stderr: str = "") -> ProcessRunResult:
    return ProcessRunResult(
        exit_code=0,
        timed_out=False,
        stdout=stdout,
        stderr=stderr,
        elapsed_seconds=0.01,
    )


@pytest.fixture(autouse=True)
def importable_source(monkeypatch: pytest.MonkeyPatch) -> None:
    """Let echo agent subprocesses import the package from a source checkout."""

    existing = os.environ.get("PYTHONPATH")
    paths = [str(SRC_DIR), existing] if existing else [str(SRC_DIR)]
    monkeypatch.setenv("PYTHONPATH", os.pathsep.join(paths))


@pytest.fixture()
def echo_invocation_settings() -> InvocationSettings:
    """Invocation settings that run the local echo agent instead of real CLIs."""

    return InvocationSettings(
        local_timeout_seconds=30,
        claude_command=ECHO_AGENT_COMMAND,
        codex_command=ECHO_AGENT_COMMAND,
        max_retries=0,
        retry_base_seconds=0,
    )


@pytest.fixture()
def relay_home(tmp_path: Path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture()
def write_settings(relay_home: Path) -> Callable[[dict[str, Any]], Path]:
    """Write a settings document into the relay home."""

    def _write(payload: dict[str, Any]) -> Path:
        path = relay_home / "settings.json"
        path.write_text(json.dumps(payload), "utf-8")
        return path

    return _write
