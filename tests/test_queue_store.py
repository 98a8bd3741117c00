from __future__ import annotations

import json
import os
import threading
from pathlib import Path

import allure
import pytest

from agent_relay.orchestrator.models import ResponseItem, WorkItem
from agent_relay.orchestrator.queue_store import WorkItemStore

pytestmark = [
    allure.epic("Relay Runtime"),
    allure.feature("Durable Work Queue"),
]


@pytest.fixture()
def store(tmp_path: Path) -> WorkItemStore:
    queue = WorkItemStore.under(tmp_path / "queue", deletion_grace_seconds=0)
    queue.ensure_dirs()
    return queue


def _item(message_id: str, *, message: str = "hello", channel: str = "discord") -> WorkItem:
    return WorkItem(
        message_id=message_id,
        channel=channel,
        sender="alice",
        sender_id="u-1",
        message=message,
        timestamp=1_700_000_000_000,
        agent="strategist",
    )


def _response(item: WorkItem, text: str = "done") -> ResponseItem:
    return ResponseItem(
        message_id=item.message_id,
        channel=item.channel,
        sender=item.sender,
        message=text,
        original_message=item.message,
        timestamp=1_700_000_001_000,
        agent=item.agent,
    )


def test_enqueue_writes_camel_case_contract(store: WorkItemStore) -> None:
    store.enqueue(_item("m1"))

    path = store.incoming_dir / "discord_m1.json"
    payload = json.loads(path.read_text("utf-8"))
    assert payload == {
        "channel": "discord",
        "sender": "alice",
        "senderId": "u-1",
        "message": "hello",
        "timestamp": 1_700_000_000_000,
        "messageId": "m1",
        "agent": "strategist",
    }
    assert [entry.name for entry in store.incoming_dir.iterdir()] == ["discord_m1.json"]


def test_poll_new_returns_items_oldest_first_and_only_once(store: WorkItemStore) -> None:
    store.enqueue(_item("late"))
    store.enqueue(_item("early"))
    os.utime(store.incoming_dir / "discord_early.json", (1_000, 1_000))
    os.utime(store.incoming_dir / "discord_late.json", (2_000, 2_000))

    first = store.poll_new()
    second = store.poll_new()

    assert [queued.item.message_id for queued in first] == ["early", "late"]
    assert second == []


def test_partially_written_file_is_retried_on_next_poll(store: WorkItemStore) -> None:
    path = store.incoming_dir / "discord_partial.json"
    path.write_text('{"channel": "discord", "sender": ', "utf-8")

    assert store.poll_new() == []
    assert path.exists()

    path.write_text(
        json.dumps(
            {
                "channel": "discord",
                "sender": "bob",
                "message": "complete now",
                "timestamp": 1,
                "messageId": "partial",
            },
        ),
        "utf-8",
    )
    polled = store.poll_new()
    assert [queued.item.message for queued in polled] == ["complete now"]


def test_structurally_invalid_file_is_dropped(
    store: WorkItemStore,
    caplog: pytest.LogCaptureFixture,
) -> None:
    path = store.incoming_dir / "discord_bad.json"
    path.write_text(json.dumps({"channel": "discord", "message": "no id"}), "utf-8")

    with caplog.at_level("WARNING"):
        assert store.poll_new() == []

    assert not path.exists()
    assert "Dropping malformed work item" in caplog.text


def test_unreadable_incoming_directory_yields_empty_list(tmp_path: Path) -> None:
    store = WorkItemStore.under(tmp_path / "missing")

    assert store.poll_new() == []


def test_claim_moves_item_and_second_claim_fails(store: WorkItemStore) -> None:
    store.enqueue(_item("m1"))
    (queued,) = store.poll_new()
    stale_copy = type(queued)(item=queued.item, path=queued.path)

    assert store.claim(queued) is True
    assert queued.path.parent == store.processing_dir
    assert store.claim(stale_copy) is False


def test_complete_writes_response_and_removes_claimed_input(store: WorkItemStore) -> None:
    item = _item("m1")
    store.enqueue(item)
    (queued,) = store.poll_new()
    store.claim(queued)

    response_path = store.complete(queued, _response(item))

    assert response_path.name == "discord_m1_1700000001000.json"
    assert json.loads(response_path.read_text("utf-8"))["originalMessage"] == "hello"
    assert not queued.path.exists()
    assert store.pending_count() == 0


def test_complete_waits_grace_delay_before_deleting(tmp_path: Path) -> None:
    sleeps: list[float] = []
    store = WorkItemStore.under(tmp_path / "queue", deletion_grace_seconds=0.2, sleep=sleeps.append)
    store.ensure_dirs()
    item = _item("m1")
    store.enqueue(item)
    (queued,) = store.poll_new()
    store.claim(queued)

    store.complete(queued, _response(item))

    assert sleeps == [0.2]


def test_collect_responses_filters_and_deletes(store: WorkItemStore) -> None:
    first = _item("m1")
    other = _item("hb1", channel="heartbeat")
    store.write_response(_response(first, "one"))
    store.write_response(_response(other, "two"))

    kept = store.collect_responses(channel="heartbeat", delete=False)
    assert [response.message for response in kept] == ["two"]

    collected = store.collect_responses(message_id="m1")
    assert [response.message for response in collected] == ["one"]
    assert store.collect_responses(message_id="m1") == []
    assert [response.message for response in store.collect_responses()] == ["two"]


def test_recover_orphans_requeues_claimed_items(store: WorkItemStore) -> None:
    store.enqueue(_item("m1"))
    (queued,) = store.poll_new()
    store.claim(queued)

    restarted = WorkItemStore.under(store.incoming_dir.parent, deletion_grace_seconds=0)
    assert restarted.recover_orphans() == 1
    assert [queued.item.message_id for queued in restarted.poll_new()] == ["m1"]


def test_watch_resumes_with_shared_seen_set(store: WorkItemStore) -> None:
    stop_event = threading.Event()
    store.enqueue(_item("a"))
    store.enqueue(_item("b"))

    first_generator = store.watch(stop_event=stop_event, poll_interval_seconds=0.01)
    first = next(first_generator)
    first_generator.close()

    resumed = store.watch(stop_event=stop_event, poll_interval_seconds=0.01)
    second = next(resumed)
    resumed.close()

    assert {first.item.message_id, second.item.message_id} == {"a", "b"}


def test_watch_stops_when_event_is_set(store: WorkItemStore) -> None:
    stop_event = threading.Event()
    stop_event.set()

    assert list(store.watch(stop_event=stop_event)) == []
