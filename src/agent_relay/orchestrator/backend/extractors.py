"""Provider-specific extraction of the response text from CLI stdout."""

from __future__ import annotations

import json
from typing import Protocol

from agent_relay.orchestrator.models import Provider

CODEX_EMPTY_RESPONSE = "Sorry, I could not generate a response from Codex."


class ResponseExtractor(Protocol):
    """Turns raw agent stdout into the response text."""

    def extract(self, stdout: str) -> str: ...


class PlainTextExtractor:
    """Claude prints the final answer as plain text."""

    def extract(self, stdout: str) -> str:
        return stdout.strip()


class JsonlAgentMessageExtractor:
    """Codex ``--json`` emits one event per line; keep the last agent message."""

    def __init__(self, *, empty_response: str = CODEX_EMPTY_RESPONSE) -> None:
        self.empty_response = empty_response

    def extract(self, stdout: str) -> str:
        response = ""
        for line in stdout.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(record, dict) or record.get("type") != "item.completed":
                continue
            item = record.get("item")
            if isinstance(item, dict) and item.get("type") == "agent_message":
                response = str(item.get("text") or "")
        return response or self.empty_response


def extractor_for(provider: Provider) -> ResponseExtractor:
    if provider == Provider.OPENAI:
        return JsonlAgentMessageExtractor()
    return PlainTextExtractor()
