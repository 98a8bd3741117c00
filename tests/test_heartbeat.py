from __future__ import annotations

import os
import threading
from pathlib import Path

import allure
import pytest
from conftest import FakeRunner, ok_result

from agent_relay.config import HeartbeatSettings
from agent_relay.orchestrator.errors import ConfigurationError
from agent_relay.orchestrator.heartbeat import HeartbeatScheduler, HeartbeatStateStore
from agent_relay.orchestrator.models import ResponseItem
from agent_relay.orchestrator.queue_store import WorkItemStore
from agent_relay.orchestrator.relay_config import RelayConfig, parse_relay_config

pytestmark = [
    allure.epic("Relay Runtime"),
    allure.feature("Heartbeats"),
]

NOW = 1_700_000_000


class RecordingSink:
    def __init__(self, *, ok: bool = True) -> None:
        self.messages: list[str] = []
        self._ok = ok

    def send(self, text: str) -> bool:
        self.messages.append(text)
        return self._ok


def _config(mode: str = "claude", interval: int = 30) -> RelayConfig:
    return parse_relay_config(
        {
            "agents": {
                "coder": {"heartbeat_interval": interval, "heartbeat_mode": mode},
                "quiet": {},
            },
        },
    )


@pytest.fixture()
def store(tmp_path: Path) -> WorkItemStore:
    queue = WorkItemStore.under(tmp_path / "queue", deletion_grace_seconds=0)
    queue.ensure_dirs()
    return queue


@pytest.fixture()
def state(tmp_path: Path) -> HeartbeatStateStore:
    return HeartbeatStateStore(tmp_path / "state")


def _scheduler(
    tmp_path: Path,
    store: WorkItemStore,
    state: HeartbeatStateStore,
    *,
    config: RelayConfig | None = None,
    sink: RecordingSink | None = None,
    sleep=lambda seconds: None,
    runner=None,
) -> HeartbeatScheduler:
    return HeartbeatScheduler(
        settings=HeartbeatSettings(response_wait_seconds=5),
        config_loader=lambda: config or _config(),
        store=store,
        state=state,
        workspace_dir=tmp_path / "workspace",
        notifier=sink,
        runner=runner,
        clock=lambda: NOW,
        sleep=sleep,
    )


def test_agent_is_due_only_after_its_interval(
    tmp_path: Path,
    store: WorkItemStore,
    state: HeartbeatStateStore,
) -> None:
    scheduler = _scheduler(tmp_path, store, state)
    config = _config(interval=30)
    state.record("coder", NOW)

    assert scheduler.due_agents(config, NOW + 29) == []
    assert [agent.agent_id for agent in scheduler.due_agents(config, NOW + 31)] == ["coder"]
    assert [agent.agent_id for agent in scheduler.due_agents(config, NOW + 30)] == ["coder"]


def test_agent_without_state_is_due_immediately(
    tmp_path: Path,
    store: WorkItemStore,
    state: HeartbeatStateStore,
) -> None:
    scheduler = _scheduler(tmp_path, store, state)

    assert state.last_fired("coder") == 0
    assert [agent.agent_id for agent in scheduler.due_agents(_config(), NOW)] == ["coder"]


def test_state_record_never_moves_backwards(state: HeartbeatStateStore) -> None:
    assert state.record("coder", 200) == 200
    assert state.record("coder", 100) == 200
    assert state.last_fired("coder") == 200
    assert state.record("coder", 300) == 300


def test_unreadable_state_counts_as_never_fired(state: HeartbeatStateStore) -> None:
    state.state_dir.mkdir(parents=True)
    (state.state_dir / "coder.last").write_text("yesterday", "utf-8")

    assert state.last_fired("coder") == 0


def test_prompt_mode_queues_status_check_and_forwards_response(
    tmp_path: Path,
    store: WorkItemStore,
    state: HeartbeatStateStore,
) -> None:
    sink = RecordingSink()
    message_id = f"heartbeat_coder_{NOW}_{os.getpid()}"
    waits: list[float] = []

    def answer_while_waiting(seconds: float) -> None:
        waits.append(seconds)
        (queued,) = store.poll_new()
        store.write_response(
            ResponseItem(
                message_id=queued.item.message_id,
                channel=queued.item.channel,
                sender=queued.item.sender,
                message="All quiet. " + "x" * 3000,
                original_message=queued.item.message,
                timestamp=NOW * 1000 + 1,
                agent="coder",
            ),
        )

    scheduler = _scheduler(tmp_path, store, state, sink=sink, sleep=answer_while_waiting)

    fired = scheduler.tick()

    assert fired == ["coder"]
    assert waits == [5]
    assert state.last_fired("coder") == NOW
    (notification,) = sink.messages
    assert notification.startswith("**@coder heartbeat:**\nAll quiet. ")
    assert len(notification) == len("**@coder heartbeat:**\n") + 1800
    assert store.collect_responses(message_id=message_id) == []


def test_prompt_mode_work_item_shape(
    tmp_path: Path,
    store: WorkItemStore,
    state: HeartbeatStateStore,
) -> None:
    scheduler = _scheduler(tmp_path, store, state)

    scheduler.tick()

    (queued,) = store.poll_new()
    item = queued.item
    assert item.message_id == f"heartbeat_coder_{NOW}_{os.getpid()}"
    assert item.channel == "heartbeat"
    assert item.sender == "System"
    assert item.sender_id == "heartbeat_coder"
    assert item.command == "heartbeat"
    assert item.agent == "coder"
    assert item.message == HeartbeatSettings().default_prompt


def test_heartbeat_prompt_prefers_agent_file(
    tmp_path: Path,
    store: WorkItemStore,
    state: HeartbeatStateStore,
) -> None:
    agent_dir = tmp_path / "workspace" / "coder"
    agent_dir.mkdir(parents=True)
    (agent_dir / "heartbeat.md").write_text("  Summarize open PRs.\n", "utf-8")
    scheduler = _scheduler(tmp_path, store, state)

    assert scheduler.heartbeat_prompt("coder") == "Summarize open PRs."
    assert scheduler.heartbeat_prompt("quiet") == HeartbeatSettings().default_prompt


def test_prompt_mode_without_response_still_records_fire(
    tmp_path: Path,
    store: WorkItemStore,
    state: HeartbeatStateStore,
) -> None:
    sink = RecordingSink()
    scheduler = _scheduler(tmp_path, store, state, sink=sink)

    assert scheduler.tick() == ["coder"]
    assert sink.messages == []
    assert state.last_fired("coder") == NOW
    assert scheduler.tick(now=NOW + 10) == []


def test_script_mode_runs_executable_and_forwards_output(
    tmp_path: Path,
    store: WorkItemStore,
    state: HeartbeatStateStore,
) -> None:
    agent_dir = tmp_path / "workspace" / "coder"
    agent_dir.mkdir(parents=True)
    script = agent_dir / "heartbeat.sh"
    script.write_text("#!/bin/sh\necho \"disk ok in $(basename \"$PWD\")\"\n", "utf-8")
    script.chmod(0o755)
    sink = RecordingSink()
    scheduler = _scheduler(tmp_path, store, state, config=_config(mode="script"), sink=sink)

    assert scheduler.tick() == ["coder"]

    assert sink.messages == ["disk ok in coder"]
    assert store.poll_new() == []


def test_script_mode_skips_non_executable_script(
    tmp_path: Path,
    store: WorkItemStore,
    state: HeartbeatStateStore,
) -> None:
    agent_dir = tmp_path / "workspace" / "coder"
    agent_dir.mkdir(parents=True)
    (agent_dir / "heartbeat.sh").write_text("#!/bin/sh\necho hi\n", "utf-8")
    runner = FakeRunner([ok_result("hi")])
    sink = RecordingSink()
    scheduler = _scheduler(
        tmp_path,
        store,
        state,
        config=_config(mode="script"),
        sink=sink,
        runner=runner,
    )

    assert scheduler.tick() == ["coder"]
    assert runner.requests == []
    assert sink.messages == []
    assert state.last_fired("coder") == NOW


@pytest.mark.parametrize("error", [OSError("disk full"), KeyError("agent")])
def test_failed_fire_is_recorded_and_does_not_stop_other_agents(
    tmp_path: Path,
    store: WorkItemStore,
    state: HeartbeatStateStore,
    error: Exception,
) -> None:
    config = parse_relay_config(
        {
            "agents": {
                "broken": {"heartbeat_interval": 30},
                "coder": {"heartbeat_interval": 30},
            },
        },
    )
    scheduler = _scheduler(tmp_path, store, state, config=config)
    original_fire = scheduler.fire

    def fire(agent, now):
        if agent.agent_id == "broken":
            raise error
        original_fire(agent, now)

    scheduler.fire = fire  # type: ignore[method-assign]

    assert scheduler.tick() == ["broken", "coder"]
    assert state.last_fired("broken") == NOW
    assert state.last_fired("coder") == NOW


def test_tick_with_unreadable_settings_fires_nothing(
    tmp_path: Path,
    store: WorkItemStore,
    state: HeartbeatStateStore,
) -> None:
    def broken_loader() -> RelayConfig:
        raise ConfigurationError("Cannot read settings")

    scheduler = HeartbeatScheduler(
        settings=HeartbeatSettings(),
        config_loader=broken_loader,
        store=store,
        state=state,
        workspace_dir=tmp_path,
    )

    assert scheduler.tick(now=NOW) == []


def test_run_stops_when_event_is_set(
    tmp_path: Path,
    store: WorkItemStore,
    state: HeartbeatStateStore,
) -> None:
    scheduler = HeartbeatScheduler(
        settings=HeartbeatSettings(tick_seconds=0.01, response_wait_seconds=0),
        config_loader=_config,
        store=store,
        state=state,
        workspace_dir=tmp_path / "workspace",
    )
    stop = threading.Event()

    thread = scheduler.start_in_thread(stop)
    stop.set()
    thread.join(timeout=5)

    assert not thread.is_alive()


def test_undecodable_script_output_does_not_block_other_agents(
    tmp_path: Path,
    store: WorkItemStore,
    state: HeartbeatStateStore,
) -> None:
    scripts = {"a1": "printf 'x\\377y'", "a2": "echo fine"}
    for agent_id, body in scripts.items():
        agent_dir = tmp_path / "workspace" / agent_id
        agent_dir.mkdir(parents=True)
        script = agent_dir / "heartbeat.sh"
        script.write_text(f"#!/bin/sh\n{body}\n", "utf-8")
        script.chmod(0o755)
    config = parse_relay_config(
        {
            "agents": {
                agent_id: {"heartbeat_interval": 30, "heartbeat_mode": "script"}
                for agent_id in scripts
            },
        },
    )
    sink = RecordingSink()
    scheduler = _scheduler(tmp_path, store, state, config=config, sink=sink)

    assert scheduler.tick() == ["a1", "a2"]

    assert sink.messages == ["x\ufffdy", "fine"]
    assert state.last_fired("a1") == NOW
    assert state.last_fired("a2") == NOW
