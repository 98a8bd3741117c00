"""Append-only event files for dashboards and other observers."""

from __future__ import annotations

import itertools
import json
import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any
from uuid import uuid4

from agent_relay.orchestrator.contracts import load_json, write_json_atomic
from agent_relay.orchestrator.errors import ContractError
from agent_relay.orchestrator.models import EventType

logger = logging.getLogger(__name__)


class EventEmitter:
    """Writes one JSON file per event into ``events_dir``.

    File names start with the millisecond timestamp and a per-process
    sequence number, so a lexical sort reproduces emission order.
    Emission failures are logged and never interrupt the caller.
    """

    def __init__(
        self,
        events_dir: Path,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.events_dir = events_dir
        self._clock = clock
        self._sequence = itertools.count()
        self._lock = threading.Lock()

    def emit(self, event_type: EventType, **fields: Any) -> dict[str, Any]:
        timestamp_ms = int(self._clock() * 1000)
        payload: dict[str, Any] = {"type": event_type.value, "timestamp": timestamp_ms, **fields}
        with self._lock:
            sequence = next(self._sequence)
        name = f"{timestamp_ms:013d}-{sequence:08d}-{uuid4().hex[:6]}.json"
        try:
            write_json_atomic(self.events_dir / name, payload)
        except OSError as error:
            logger.warning("Failed to emit %s event: %s", event_type.value, error)
        return payload


def read_events(events_dir: Path) -> list[dict[str, Any]]:
    """Read all event files in emission order; undecodable files are skipped."""

    try:
        paths = sorted(
            path
            for path in events_dir.iterdir()
            if path.suffix == ".json" and not path.name.startswith(".")
        )
    except OSError:
        return []
    events: list[dict[str, Any]] = []
    for path in paths:
        try:
            events.append(load_json(path))
        except (json.JSONDecodeError, OSError, ContractError):
            continue
    return events


def prune_events(
    events_dir: Path,
    *,
    max_age_seconds: float,
    now: float | None = None,
) -> int:
    """Delete event files older than ``max_age_seconds``; returns how many were removed."""

    current = time.time() if now is None else now
    removed = 0
    try:
        paths = [path for path in events_dir.iterdir() if path.suffix == ".json"]
    except OSError:
        return 0
    for path in paths:
        try:
            age = current - path.stat().st_mtime
        except OSError:
            continue
        if age < max_age_seconds:
            continue
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        removed += 1
    return removed
