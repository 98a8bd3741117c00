"""Webhook notification sink for heartbeat and background output."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import httpx

from agent_relay.orchestrator.errors import RelayError
from agent_relay.orchestrator.models import FailureClass
from agent_relay.orchestrator.retry import with_retry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
MAX_MESSAGE_CHARS = 2_000
CHUNK_CHARS = 1_900
_TRANSIENT_STATUS_CODES = frozenset({429, 502, 503, 504})


class NotificationSink(Protocol):
    """Destination for human-readable notifications."""

    def send(self, text: str) -> bool: ...


@dataclass(slots=True)
class DeliveryResult:
    """Result of one webhook POST."""

    status_code: int
    is_success: bool
    error: str | None = None


class WebhookDeliveryError(RelayError):
    """Webhook POST failed."""

    def __init__(self, message: str, *, status_code: int, failure_class: FailureClass) -> None:
        super().__init__(message, failure_class=failure_class)
        self.status_code = status_code


def split_message(text: str, *, chunk_chars: int = CHUNK_CHARS) -> list[str]:
    """Split at paragraph, then line, then word boundaries into bounded chunks."""

    chunks: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= chunk_chars:
            chunks.append(remaining)
            break
        split_at = -1
        for separator in ("\n\n", "\n", " "):
            split_at = remaining.rfind(separator, 0, chunk_chars)
            if split_at > 0:
                break
        if split_at <= 0:
            split_at = chunk_chars
        chunks.append(remaining[:split_at])
        remaining = remaining[split_at:].strip()
    return chunks


class WebhookNotifier:
    """Posts ``{"content": ...}`` payloads to a chat webhook URL."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        url: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_message_chars: int = MAX_MESSAGE_CHARS,
        chunk_chars: int = CHUNK_CHARS,
        chunk_delay_seconds: float = 0.5,
        retry_base_seconds: float = 1.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.url = url
        self.max_message_chars = max_message_chars
        self.chunk_chars = chunk_chars
        self.chunk_delay_seconds = chunk_delay_seconds
        self.retry_base_seconds = retry_base_seconds
        self._sleep = sleep
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=5.0),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    def post(self, content: str) -> DeliveryResult:
        """POST one message (capped at the platform limit), retrying once if transient."""

        if not self.url:
            logger.warning("Webhook URL not configured; dropping notification")
            return DeliveryResult(status_code=0, is_success=False, error="not configured")
        payload = {"content": content[: self.max_message_chars]}
        try:
            return with_retry(
                lambda: self._post_once(payload),
                max_retries=1,
                base_delay=self.retry_base_seconds,
                label="webhook post",
                sleep=self._sleep,
            )
        except WebhookDeliveryError as error:
            logger.warning("Webhook delivery failed: %s", error)
            return DeliveryResult(status_code=error.status_code, is_success=False, error=str(error))

    def send(self, text: str) -> bool:
        """Deliver ``text``, splitting long messages into several posts."""

        if len(text) <= self.chunk_chars:
            return self.post(text).is_success
        all_ok = True
        for index, chunk in enumerate(split_message(text, chunk_chars=self.chunk_chars)):
            if index and self.chunk_delay_seconds > 0:
                self._sleep(self.chunk_delay_seconds)
            if not self.post(chunk).is_success:
                all_ok = False
        return all_ok

    def _post_once(self, payload: dict[str, str]) -> DeliveryResult:
        try:
            response = self._client.post(self.url, json=payload)
        except httpx.TimeoutException as error:
            raise WebhookDeliveryError(
                f"timeout: {error}",
                status_code=0,
                failure_class=FailureClass.TIMEOUT,
            ) from error
        except httpx.TransportError as error:
            raise WebhookDeliveryError(
                f"transport error: {error}",
                status_code=0,
                failure_class=FailureClass.TRANSIENT,
            ) from error
        if response.is_success:
            return DeliveryResult(status_code=response.status_code, is_success=True)
        raise WebhookDeliveryError(
            f"HTTP {response.status_code}: {response.text[:200]}",
            status_code=response.status_code,
            failure_class=(
                FailureClass.TRANSIENT
                if response.status_code in _TRANSIENT_STATUS_CODES
                else FailureClass.NON_RETRYABLE
            ),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> WebhookNotifier:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
