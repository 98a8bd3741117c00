"""File-based JSON contracts for work items, responses, and state files."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any
from uuid import uuid4

from agent_relay.orchestrator.errors import ContractError
from agent_relay.orchestrator.models import ResponseItem, WorkItem


def write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON through a temp file and rename so readers never see partial data."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{uuid4().hex[:8]}.tmp")
    tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), "utf-8")
    os.replace(tmp_path, path)


def write_text_atomic(path: Path, text: str) -> None:
    """Persist a small text value through a temp file and rename."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{uuid4().hex[:8]}.tmp")
    tmp_path.write_text(text, "utf-8")
    os.replace(tmp_path, path)


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type.

    Raises ``json.JSONDecodeError`` for undecodable (possibly half-written)
    content and ``ContractError`` for a non-object document.
    """

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise ContractError(f"Expected JSON object in {path}")
    return payload


def work_item_to_payload(item: WorkItem) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "channel": item.channel,
        "sender": item.sender,
        "message": item.message,
        "timestamp": item.timestamp,
        "messageId": item.message_id,
    }
    if item.sender_id is not None:
        payload["senderId"] = item.sender_id
    if item.agent is not None:
        payload["agent"] = item.agent
    if item.command is not None:
        payload["command"] = item.command
    if item.team is not None:
        payload["team"] = item.team
    if item.files:
        payload["files"] = list(item.files)
    return payload


def work_item_from_payload(raw: dict[str, Any]) -> WorkItem:
    """Deserialize and validate one incoming work item."""

    message_id = raw.get("messageId")
    channel = raw.get("channel")
    sender = raw.get("sender")
    message = raw.get("message")
    timestamp = raw.get("timestamp")
    if not isinstance(message_id, str) or not message_id.strip():
        raise ContractError("work item messageId must be a non-empty string")
    if not isinstance(channel, str) or not channel.strip():
        raise ContractError("work item channel must be a non-empty string")
    if not isinstance(sender, str):
        raise ContractError("work item sender must be a string")
    if not isinstance(message, str):
        raise ContractError("work item message must be a string")
    if isinstance(timestamp, bool) or not isinstance(timestamp, int | float):
        raise ContractError("work item timestamp must be a number (ms epoch)")

    return WorkItem(
        message_id=message_id.strip(),
        channel=channel.strip(),
        sender=sender,
        message=message,
        timestamp=int(timestamp),
        sender_id=_optional_str(raw, "senderId"),
        agent=_optional_str(raw, "agent"),
        command=_optional_str(raw, "command"),
        team=_optional_str(raw, "team"),
        files=_str_list(raw, "files"),
    )


def response_to_payload(response: ResponseItem) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "channel": response.channel,
        "sender": response.sender,
        "message": response.message,
        "originalMessage": response.original_message,
        "timestamp": response.timestamp,
        "messageId": response.message_id,
    }
    if response.agent is not None:
        payload["agent"] = response.agent
    if response.files:
        payload["files"] = list(response.files)
    return payload


def response_from_payload(raw: dict[str, Any]) -> ResponseItem:
    """Deserialize and validate one outgoing response."""

    message_id = raw.get("messageId")
    message = raw.get("message")
    if not isinstance(message_id, str) or not message_id.strip():
        raise ContractError("response messageId must be a non-empty string")
    if not isinstance(message, str):
        raise ContractError("response message must be a string")
    timestamp = raw.get("timestamp", 0)
    return ResponseItem(
        message_id=message_id,
        channel=str(raw.get("channel", "")),
        sender=str(raw.get("sender", "")),
        message=message,
        original_message=str(raw.get("originalMessage", "")),
        timestamp=int(timestamp) if isinstance(timestamp, int | float) else 0,
        agent=_optional_str(raw, "agent"),
        files=_str_list(raw, "files"),
    )


def _optional_str(raw: dict[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ContractError(f"{key} must be a string when present")
    stripped = value.strip()
    return stripped or None


def _str_list(raw: dict[str, Any], key: str) -> list[str]:
    value = raw.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(entry, str) for entry in value):
        raise ContractError(f"{key} must be an array of strings")
    return list(value)
