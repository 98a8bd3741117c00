from __future__ import annotations

import shlex
from collections.abc import Callable
from pathlib import Path
from typing import Any

import allure
import pytest
from click.testing import CliRunner
from conftest import ECHO_AGENT_COMMAND

from agent_relay.main import agent_relay

pytestmark = [
    allure.epic("Relay Runtime"),
    allure.feature("Command Line"),
]

SETTINGS: dict[str, Any] = {
    "agents": {
        "strategist": {"name": "Strategist", "provider": "anthropic", "model": "sonnet"},
        "coder": {
            "name": "Coder",
            "provider": "openai",
            "model": "gpt-5.3-codex",
            "heartbeat_interval": 600,
            "heartbeat_mode": "script",
        },
    },
    "teams": {"dev": {"name": "Dev", "agents": ["strategist", "coder"]}},
    "routing": {"default_agent": "strategist"},
}


@pytest.fixture(autouse=True)
def echo_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    command = shlex.join(ECHO_AGENT_COMMAND)
    monkeypatch.setenv("AGENT_RELAY_CLAUDE_COMMAND", command)
    monkeypatch.setenv("AGENT_RELAY_CODEX_COMMAND", command)
    monkeypatch.setenv("AGENT_RELAY_WORKSPACE", str(tmp_path / "workspace"))
    monkeypatch.setenv("AGENT_RELAY_MAX_RETRIES", "0")
    monkeypatch.setenv("AGENT_RELAY_DELETION_GRACE_SECONDS", "0")
    monkeypatch.delenv("AGENT_RELAY_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("DISCORD_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("AGENT_RELAY_EMBED_HEARTBEAT", raising=False)


def _run(home: Path, *args: str):
    return CliRunner().invoke(agent_relay, [args[0], "--home", str(home), *args[1:]])


def test_enqueue_process_and_drain_responses(
    relay_home: Path,
    write_settings: Callable[[dict[str, Any]], Path],
) -> None:
    write_settings(SETTINGS)

    queued = _run(relay_home, "enqueue", "-m", "@coder hello there", "--message-id", "m1")
    processed = _run(relay_home, "processor", "--once")
    drained = _run(relay_home, "responses")
    empty = _run(relay_home, "responses")

    assert queued.exit_code == 0, queued.output
    assert "Work item queued: message_id=m1 channel=cli" in queued.output
    assert processed.exit_code == 0, processed.output
    assert "processed=1 succeeded=1 failed=0" in processed.output
    assert drained.exit_code == 0, drained.output
    assert "[m1] cli/cli @coder" in drained.output
    assert "  hello there" in drained.output
    assert "No responses." in empty.output


def test_processor_loop_exits_after_idle_polls(
    relay_home: Path,
    write_settings: Callable[[dict[str, Any]], Path],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    write_settings(SETTINGS)
    monkeypatch.setenv("AGENT_RELAY_POLL_INTERVAL_SECONDS", "0.01")

    result = _run(relay_home, "processor", "--loop", "--max-idle-polls", "2")

    assert result.exit_code == 0, result.output
    assert "processed=0" in result.output
    assert "idle_polls=2" in result.output


def test_responses_keep_leaves_files(
    relay_home: Path,
    write_settings: Callable[[dict[str, Any]], Path],
) -> None:
    write_settings(SETTINGS)
    _run(relay_home, "enqueue", "-m", "ping", "--message-id", "m1", "--channel", "discord")
    _run(relay_home, "processor", "--once")

    kept = _run(relay_home, "responses", "--keep", "--channel", "discord")
    filtered = _run(relay_home, "responses", "--message-id", "other")
    drained = _run(relay_home, "responses", "--message-id", "m1")

    assert "[m1] discord/cli @strategist" in kept.output
    assert "No responses." in filtered.output
    assert "  ping" in drained.output


def test_agents_and_teams_listing(
    relay_home: Path,
    write_settings: Callable[[dict[str, Any]], Path],
) -> None:
    write_settings(SETTINGS)

    agents = _run(relay_home, "agents")
    teams = _run(relay_home, "teams")

    assert agents.exit_code == 0, agents.output
    assert (
        "- @strategist (default): name=Strategist provider=anthropic "
        "model=claude-sonnet-4-5 mode=local"
    ) in agents.output
    assert "heartbeat=600s/script" in agents.output
    assert teams.exit_code == 0, teams.output
    assert "- @dev: name=Dev leader=@strategist @strategist -> @coder" in teams.output


def test_listings_without_settings(relay_home: Path) -> None:
    assert "No agents configured." in _run(relay_home, "agents").output
    assert "No teams configured." in _run(relay_home, "teams").output


def test_reset_writes_flags(
    relay_home: Path,
    write_settings: Callable[[dict[str, Any]], Path],
) -> None:
    write_settings(SETTINGS)

    scoped = _run(relay_home, "reset", "--agent", "Coder")
    global_reset = _run(relay_home, "reset")
    unknown = _run(relay_home, "reset", "--agent", "ghost")

    assert "Conversation reset requested for @coder." in scoped.output
    assert (relay_home / "reset_flags" / "coder").exists()
    assert "Conversation reset requested for the next invoked agent." in global_reset.output
    assert (relay_home / "reset_flag").exists()
    assert unknown.exit_code != 0
    assert "Unknown agent @ghost" in unknown.output


def test_invoke_runs_agent_directly(
    relay_home: Path,
    write_settings: Callable[[dict[str, Any]], Path],
) -> None:
    write_settings(SETTINGS)

    result = _run(relay_home, "invoke", "--agent", "strategist", "-m", "status?")

    assert result.exit_code == 0, result.output
    assert "@strategist OK (" in result.output
    assert "status?" in result.output


def test_invoke_failure_exits_non_zero(
    relay_home: Path,
    write_settings: Callable[[dict[str, Any]], Path],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    write_settings(SETTINGS)
    monkeypatch.setenv("AGENT_RELAY_ECHO_EXIT_CODE", "2")
    monkeypatch.setenv("AGENT_RELAY_ECHO_STDERR", "not logged in")

    result = _run(relay_home, "invoke", "--agent", "coder", "-m", "hello")

    assert result.exit_code != 0
    assert "@coder FAILED (process, local): not logged in" in result.output
    assert "Agent invocation failed." in result.output


def test_heartbeat_once_runs_due_script(
    relay_home: Path,
    write_settings: Callable[[dict[str, Any]], Path],
    tmp_path: Path,
) -> None:
    write_settings(SETTINGS)
    agent_dir = tmp_path / "workspace" / "coder"
    agent_dir.mkdir(parents=True)
    script = agent_dir / "heartbeat.sh"
    script.write_text("#!/bin/sh\necho ok\n", "utf-8")
    script.chmod(0o755)

    first = _run(relay_home, "heartbeat", "--once")
    second = _run(relay_home, "heartbeat", "--once")

    assert first.exit_code == 0, first.output
    assert "Heartbeat fired: @coder" in first.output
    assert "Heartbeat fired: none" in second.output
    assert (relay_home / "heartbeat-state" / "coder.last").exists()


def test_events_prune_reports_count(
    relay_home: Path,
    write_settings: Callable[[dict[str, Any]], Path],
) -> None:
    write_settings(SETTINGS)
    _run(relay_home, "enqueue", "-m", "ping")
    _run(relay_home, "processor", "--once")

    kept = _run(relay_home, "events-prune", "--max-age-hours", "1")
    pruned = _run(relay_home, "events-prune", "--max-age-hours", "0")

    assert "Pruned 0 event file(s) older than 1h." in kept.output
    assert "Pruned 4 event file(s) older than 0h." in pruned.output


def test_invalid_environment_is_reported(
    relay_home: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("AGENT_RELAY_WEBHOOK_URL", "not-a-url")

    result = _run(relay_home, "agents")

    assert result.exit_code != 0
    assert "Invalid webhook URL" in result.output
