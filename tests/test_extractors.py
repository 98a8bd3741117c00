from __future__ import annotations

import json

import allure

from agent_relay.orchestrator.backend.extractors import (
    CODEX_EMPTY_RESPONSE,
    JsonlAgentMessageExtractor,
    PlainTextExtractor,
    extractor_for,
)
from agent_relay.orchestrator.models import Provider

pytestmark = [
    allure.epic("Relay Runtime"),
    allure.feature("Agent Invocation"),
]


def _message(text: str) -> str:
    return json.dumps({"type": "item.completed", "item": {"type": "agent_message", "text": text}})


def test_plain_text_extractor_strips_output() -> None:
    assert PlainTextExtractor().extract("\n  Final answer.\n\n") == "Final answer."


def test_jsonl_extractor_keeps_last_agent_message_and_ignores_noise() -> None:
    stdout = "\n".join(
        [
            "warning: something unrelated",
            _message("one"),
            json.dumps({"type": "item.completed", "item": {"type": "reasoning", "text": "hmm"}}),
            json.dumps({"type": "item.started", "item": {"type": "agent_message", "text": "x"}}),
            _message("two"),
            json.dumps(["not", "an", "object"]),
            "",
        ],
    )

    assert JsonlAgentMessageExtractor().extract(stdout) == "two"


def test_jsonl_extractor_falls_back_to_apology() -> None:
    assert JsonlAgentMessageExtractor().extract("garbage\n{}") == CODEX_EMPTY_RESPONSE


def test_extractor_selected_by_provider() -> None:
    assert isinstance(extractor_for(Provider.ANTHROPIC), PlainTextExtractor)
    assert isinstance(extractor_for(Provider.OPENAI), JsonlAgentMessageExtractor)

