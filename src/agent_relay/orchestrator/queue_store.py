"""Directory-backed durable mailbox of work items and responses."""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

from agent_relay.orchestrator.contracts import (
    load_json,
    response_from_payload,
    response_to_payload,
    work_item_from_payload,
    work_item_to_payload,
    write_json_atomic,
)
from agent_relay.orchestrator.errors import ContractError
from agent_relay.orchestrator.models import QueuedWorkItem, ResponseItem, WorkItem

logger = logging.getLogger(__name__)

DEFAULT_DELETION_GRACE_SECONDS = 0.2


class WorkItemStore:
    """File-per-item queue: presence in ``incoming`` means pending.

    Items are claimed by an atomic rename into ``processing`` and removed
    once their response has been written to ``outgoing``.
    """

    def __init__(
        self,
        *,
        incoming_dir: Path,
        outgoing_dir: Path,
        processing_dir: Path,
        deletion_grace_seconds: float = DEFAULT_DELETION_GRACE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.incoming_dir = incoming_dir
        self.outgoing_dir = outgoing_dir
        self.processing_dir = processing_dir
        self.deletion_grace_seconds = deletion_grace_seconds
        self._sleep = sleep
        self._seen: set[str] = set()
        self._seen_lock = threading.Lock()

    @classmethod
    def under(
        cls,
        queue_root: Path,
        *,
        deletion_grace_seconds: float = DEFAULT_DELETION_GRACE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> WorkItemStore:
        """Build a store using the conventional ``incoming/outgoing/processing`` layout."""

        return cls(
            incoming_dir=queue_root / "incoming",
            outgoing_dir=queue_root / "outgoing",
            processing_dir=queue_root / "processing",
            deletion_grace_seconds=deletion_grace_seconds,
            sleep=sleep,
        )

    def ensure_dirs(self) -> None:
        for directory in (self.incoming_dir, self.outgoing_dir, self.processing_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def enqueue(self, item: WorkItem) -> str:
        """Write one work item to the incoming directory and return its id."""

        path = self.incoming_dir / _item_filename(item.channel, item.message_id)
        write_json_atomic(path, work_item_to_payload(item))
        logger.info("Queued work item %s (channel=%s)", item.message_id, item.channel)
        return item.message_id

    def poll_new(self) -> list[QueuedWorkItem]:
        """Return parsed items not yet seen by this process.

        Undecodable files stay in place and are retried on the next poll.
        Structurally invalid files are dropped.
        """

        try:
            entries = [
                path
                for path in self.incoming_dir.iterdir()
                if path.suffix == ".json" and not path.name.startswith(".")
            ]
        except OSError as error:
            logger.warning("Incoming queue unreadable (%s): %s", self.incoming_dir, error)
            return []

        items: list[QueuedWorkItem] = []
        for path in sorted(entries, key=_mtime_or_zero):
            with self._seen_lock:
                if path.name in self._seen:
                    continue
            try:
                raw = load_json(path)
                item = work_item_from_payload(raw)
            except (json.JSONDecodeError, UnicodeDecodeError):
                logger.debug("Skipping partially written work item %s", path.name)
                continue
            except FileNotFoundError:
                continue
            except ContractError as error:
                logger.warning("Dropping malformed work item %s: %s", path.name, error)
                self._mark_seen(path.name)
                _unlink_quietly(path)
                continue
            except OSError as error:
                logger.warning("Cannot read work item %s: %s", path.name, error)
                continue

            self._mark_seen(path.name)
            items.append(QueuedWorkItem(item=item, path=path))
        return items

    def claim(self, queued: QueuedWorkItem) -> bool:
        """Move the item into ``processing``; False when someone else got it first."""

        self.processing_dir.mkdir(parents=True, exist_ok=True)
        target = self.processing_dir / queued.path.name
        try:
            os.replace(queued.path, target)
        except FileNotFoundError:
            logger.info("Work item %s already claimed elsewhere", queued.item.message_id)
            return False
        queued.path = target
        return True

    def complete(self, queued: QueuedWorkItem, response: ResponseItem) -> Path:
        """Write the response, then remove the claimed input after a short grace delay."""

        response_path = self.write_response(response)
        if self.deletion_grace_seconds > 0:
            self._sleep(self.deletion_grace_seconds)
        _unlink_quietly(queued.path)
        return response_path

    def write_response(self, response: ResponseItem) -> Path:
        stem = _item_stem(response.channel, response.message_id)
        path = self.outgoing_dir / f"{stem}_{response.timestamp}.json"
        write_json_atomic(path, response_to_payload(response))
        return path

    def watch(
        self,
        *,
        stop_event: threading.Event,
        poll_interval_seconds: float = 1.0,
    ) -> Iterator[QueuedWorkItem]:
        """Yield newly visible items until ``stop_event`` is set.

        Calling ``watch`` again resumes where the previous generator left off,
        because the seen-set lives on the store. Items polled but not yet
        yielded when a generator is closed are handed to the next one.
        """

        while not stop_event.is_set():
            batch = self.poll_new()
            for index, queued in enumerate(batch):
                try:
                    yield queued
                except GeneratorExit:
                    self._forget(pending.path.name for pending in batch[index + 1 :])
                    raise
            if not batch:
                stop_event.wait(timeout=poll_interval_seconds)

    def collect_responses(
        self,
        *,
        message_id: str | None = None,
        channel: str | None = None,
        delete: bool = True,
    ) -> list[ResponseItem]:
        """Read outgoing responses, optionally filtered, deleting them by default."""

        try:
            entries = sorted(
                path
                for path in self.outgoing_dir.iterdir()
                if path.suffix == ".json" and not path.name.startswith(".")
            )
        except OSError as error:
            logger.warning("Outgoing queue unreadable (%s): %s", self.outgoing_dir, error)
            return []

        responses: list[ResponseItem] = []
        for path in entries:
            if channel is not None and not path.name.startswith(f"{_safe(channel)}_"):
                continue
            try:
                response = response_from_payload(load_json(path))
            except (json.JSONDecodeError, UnicodeDecodeError, OSError):
                continue
            except ContractError as error:
                logger.warning("Ignoring malformed response file %s: %s", path.name, error)
                continue
            if message_id is not None and response.message_id != message_id:
                continue
            responses.append(response)
            if delete:
                _unlink_quietly(path)
        return responses

    def recover_orphans(self) -> int:
        """Return items stranded in ``processing`` by a crashed process to ``incoming``."""

        try:
            orphans = [path for path in self.processing_dir.iterdir() if path.suffix == ".json"]
        except OSError:
            return 0
        recovered = 0
        for path in orphans:
            try:
                os.replace(path, self.incoming_dir / path.name)
            except OSError as error:
                logger.warning("Cannot recover orphaned work item %s: %s", path.name, error)
                continue
            recovered += 1
        if recovered:
            logger.info("Recovered %d orphaned work item(s)", recovered)
        return recovered

    def pending_count(self) -> int:
        try:
            return sum(1 for path in self.incoming_dir.iterdir() if path.suffix == ".json")
        except OSError:
            return 0

    def _mark_seen(self, name: str) -> None:
        with self._seen_lock:
            self._seen.add(name)

    def _forget(self, names: Iterable[str]) -> None:
        with self._seen_lock:
            self._seen.difference_update(names)


def _item_stem(channel: str, message_id: str) -> str:
    return f"{_safe(channel)}_{_safe(message_id)}"


def _item_filename(channel: str, message_id: str) -> str:
    return f"{_item_stem(channel, message_id)}.json"


def _safe(value: str) -> str:
    return "".join(char if char.isalnum() or char in "-_." else "_" for char in value)


def _mtime_or_zero(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0


def _unlink_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
