"""Exponential-backoff retry for transient failures."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from agent_relay.orchestrator.failure_classifier import classify_failure

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_SECONDS = 5.0


def compute_retry_delay(*, base_delay: float, attempt: int) -> float:
    """Delay before retrying after failed attempt number ``attempt`` (0-based)."""

    return base_delay * (2**attempt)


def with_retry(
    operation: Callable[[], T],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    label: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation``, retrying transient failures up to ``max_retries`` times.

    Delays are ``base_delay * 2**attempt`` with no jitter. Non-transient
    failures and the failure of the final attempt propagate unchanged.
    """

    attempt = 0
    while True:
        try:
            return operation()
        except Exception as error:
            classification = classify_failure(error)
            if attempt >= max_retries or not classification.transient:
                raise
            delay = compute_retry_delay(base_delay=base_delay, attempt=attempt)
            logger.warning(
                "%s attempt %d/%d failed (%s: %s), retrying in %.1fs",
                label,
                attempt + 1,
                max_retries,
                classification.matched_rule,
                error,
                delay,
            )
            sleep(delay)
            attempt += 1
