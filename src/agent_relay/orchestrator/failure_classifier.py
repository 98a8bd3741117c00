"""Deterministic failure classification for the retry wrapper."""

from __future__ import annotations

from dataclasses import dataclass

from agent_relay.orchestrator.models import FailureClass

FAILURE_CLASSIFIER_VERSION = 1

_CONNECTION_PATTERNS: tuple[str, ...] = (
    "econnrefused",
    "econnreset",
    "connection refused",
    "connection reset",
    "connection aborted",
    "epipe",
    "broken pipe",
    "socket hang up",
)
_TIMEOUT_PATTERNS: tuple[str, ...] = (
    "etimedout",
    "timed out",
    "timeout",
)
_NETWORK_PATTERNS: tuple[str, ...] = (
    "network",
    "temporarily unavailable",
    "temporary failure",
    "could not resolve host",
)
_SERVER_BUSY_PATTERNS: tuple[str, ...] = (
    "429",
    "502",
    "503",
    "too many requests",
    "rate limit",
    "overloaded",
)

_TRANSIENT_CLASSES = frozenset({FailureClass.TRANSIENT, FailureClass.TIMEOUT})


@dataclass(slots=True)
class FailureClassification:
    """Normalized classification result."""

    failure_class: FailureClass
    matched_rule: str
    matched_pattern: str | None

    @property
    def transient(self) -> bool:
        return self.failure_class in _TRANSIENT_CLASSES


def classify_failure(error: BaseException) -> FailureClassification:
    """Classify an error, preferring a structural ``failure_class`` attribute."""

    structural = getattr(error, "failure_class", None)
    if isinstance(structural, FailureClass):
        return FailureClassification(
            failure_class=structural,
            matched_rule="structural",
            matched_pattern=None,
        )
    if isinstance(error, TimeoutError):
        return FailureClassification(
            failure_class=FailureClass.TIMEOUT,
            matched_rule="timeout_type",
            matched_pattern=None,
        )
    if isinstance(error, ConnectionError):
        return FailureClassification(
            failure_class=FailureClass.TRANSIENT,
            matched_rule="connection_type",
            matched_pattern=None,
        )
    return classify_message(str(error))


def classify_message(message: str) -> FailureClassification:
    """Classify a free-form error message by substring patterns."""

    haystack = message.lower()

    pattern = _first_match(haystack, _CONNECTION_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            failure_class=FailureClass.TRANSIENT,
            matched_rule="connection",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _TIMEOUT_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            failure_class=FailureClass.TIMEOUT,
            matched_rule="timeout",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _NETWORK_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            failure_class=FailureClass.TRANSIENT,
            matched_rule="network",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _SERVER_BUSY_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            failure_class=FailureClass.TRANSIENT,
            matched_rule="server_busy",
            matched_pattern=pattern,
        )

    return FailureClassification(
        failure_class=FailureClass.NON_RETRYABLE,
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def is_transient(error: BaseException) -> bool:
    """Return True when the error is worth retrying."""

    return classify_failure(error).transient


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
