"""Process runners and response extractors for agent CLIs."""

from agent_relay.orchestrator.backend.base import ProcessRunner, ProcessRunRequest, ProcessRunResult
from agent_relay.orchestrator.backend.cli_backend import SubprocessRunner
from agent_relay.orchestrator.backend.extractors import (
    JsonlAgentMessageExtractor,
    PlainTextExtractor,
    ResponseExtractor,
    extractor_for,
)

__all__ = [
    "JsonlAgentMessageExtractor",
    "PlainTextExtractor",
    "ProcessRunRequest",
    "ProcessRunResult",
    "ProcessRunner",
    "ResponseExtractor",
    "SubprocessRunner",
    "extractor_for",
]
