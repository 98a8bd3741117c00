"""Queue poll loop: claims work items, routes them, and writes responses."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass

from agent_relay.orchestrator.chain import TeamChainOrchestrator
from agent_relay.orchestrator.errors import (
    ConfigurationError,
    InvocationError,
    RateLimitedError,
    RelayError,
)
from agent_relay.orchestrator.events import EventEmitter
from agent_relay.orchestrator.invocation import InvocationEngine
from agent_relay.orchestrator.models import (
    AgentDescriptor,
    EventType,
    QueuedWorkItem,
    ResponseItem,
    RoutingTarget,
    WorkItem,
)
from agent_relay.orchestrator.queue_store import WorkItemStore
from agent_relay.orchestrator.rate_limit import SlidingWindowRateLimiter
from agent_relay.orchestrator.relay_config import RelayConfig
from agent_relay.orchestrator.reset_signal import ResetSignal
from agent_relay.orchestrator.routing import resolve_target
from agent_relay.orchestrator.sanitization import sanitize_preview

logger = logging.getLogger(__name__)

RATE_LIMITED_RESPONSE = "Rate limited. Try again in a minute."
GENERIC_ERROR_RESPONSE = "Sorry, I encountered an error processing your request."
HEARTBEAT_CHANNEL = "heartbeat"
_EVENT_PREVIEW_CHARS = 120


@dataclass(slots=True)
class ProcessorRunSummary:
    """Aggregate processor counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    rate_limited: int = 0
    idle_polls: int = 0

    def add(self, other: ProcessorRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.rate_limited += other.rate_limited
        self.idle_polls += other.idle_polls


@dataclass(slots=True)
class ItemOutcome:
    """Response text for one item and the agent that produced it."""

    text: str
    agent_id: str | None
    ok: bool
    rate_limited: bool = False


class QueueProcessor:
    """Consumes queued work items and turns each into exactly one response."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: WorkItemStore,
        engine: InvocationEngine,
        chain: TeamChainOrchestrator,
        events: EventEmitter,
        config_loader: Callable[[], RelayConfig],
        reset_signal: ResetSignal,
        limiter: SlidingWindowRateLimiter,
        heartbeat_limiter: SlidingWindowRateLimiter,
        poll_interval_seconds: float = 1.0,
        max_workers: int = 4,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.engine = engine
        self.chain = chain
        self.events = events
        self.config_loader = config_loader
        self.reset_signal = reset_signal
        self.limiter = limiter
        self.heartbeat_limiter = heartbeat_limiter
        self.poll_interval_seconds = poll_interval_seconds
        self.max_workers = max_workers
        self._clock = clock
        self._stop = threading.Event()
        self._summary_lock = threading.Lock()

    def start(self) -> int:
        """Prepare queue directories and requeue items orphaned by a crash."""

        self.store.ensure_dirs()
        recovered = self.store.recover_orphans()
        config = self.config_loader()
        self.events.emit(
            EventType.PROCESSOR_START,
            agents=list(config.agents),
            teams=list(config.teams),
        )
        logger.info(
            "Queue processor started: %d agent(s), %d team(s), %d recovered item(s)",
            len(config.agents),
            len(config.teams),
            recovered,
        )
        return recovered

    def run_once(self) -> ProcessorRunSummary:
        """Poll once and process every claimable item synchronously."""

        summary = ProcessorRunSummary()
        claimed = self._claim_new()
        if not claimed:
            summary.idle_polls = 1
            return summary
        for queued in claimed:
            summary.add(self.process_item(queued))
        return summary

    def run_loop(self, *, max_idle_polls: int | None = None) -> ProcessorRunSummary:
        """Poll until stopped, processing items concurrently on a thread pool.

        Args:
            max_idle_polls: Exit after this many consecutive empty polls once
                in-flight items finish (None = run until a stop is requested).
        """

        aggregate = ProcessorRunSummary()
        consecutive_idle = 0
        in_flight: set[Future[ProcessorRunSummary]] = set()

        def _collect(future: Future[ProcessorRunSummary]) -> None:
            in_flight.discard(future)
            with self._summary_lock:
                aggregate.add(future.result())

        with (
            self._signal_handlers(),
            ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="agent-relay-item",
            ) as executor,
        ):
            while not self._stop.is_set():
                claimed = self._claim_new()
                if claimed:
                    consecutive_idle = 0
                    for queued in claimed:
                        future = executor.submit(self.process_item, queued)
                        in_flight.add(future)
                        future.add_done_callback(_collect)
                else:
                    consecutive_idle += 1
                    with self._summary_lock:
                        aggregate.idle_polls += 1
                    if (
                        max_idle_polls is not None
                        and consecutive_idle >= max_idle_polls
                        and not in_flight
                    ):
                        break
                self._stop.wait(self.poll_interval_seconds)
        return aggregate

    def request_stop(self) -> None:
        self._stop.set()

    def process_item(self, queued: QueuedWorkItem) -> ProcessorRunSummary:
        """Handle one claimed item end to end; never raises."""

        item = queued.item
        summary = ProcessorRunSummary(processed=1)
        self.events.emit(
            EventType.MESSAGE_RECEIVED,
            messageId=item.message_id,
            channel=item.channel,
            sender=item.sender,
            message=item.message[:_EVENT_PREVIEW_CHARS],
        )
        logger.info(
            "Message from %s/%s: %s",
            item.channel,
            item.sender,
            sanitize_preview(item.message),
        )

        outcome = self.handle(item)
        if outcome.rate_limited:
            summary.rate_limited = 1
        if outcome.ok:
            summary.succeeded = 1
        else:
            summary.failed = 1

        response = ResponseItem(
            message_id=item.message_id,
            channel=item.channel,
            sender=item.sender,
            message=outcome.text,
            original_message=item.message,
            timestamp=int(self._clock() * 1000),
            agent=outcome.agent_id,
        )
        try:
            self.store.complete(queued, response)
        except OSError:
            logger.exception("Failed to write response for %s", item.message_id)
            summary.succeeded = 0
            summary.failed = 1
            return summary

        self.events.emit(
            EventType.RESPONSE_READY,
            messageId=item.message_id,
            channel=item.channel,
            sender=item.sender,
            agentId=outcome.agent_id,
            responseLength=len(outcome.text),
            responseText=outcome.text,
        )
        return summary

    def handle(self, item: WorkItem) -> ItemOutcome:
        """Compute the response text for one item, containing every failure."""

        limiter = self.heartbeat_limiter if _is_heartbeat(item) else self.limiter
        target: RoutingTarget | None = None
        try:
            if not limiter.admit():
                raise RateLimitedError(RATE_LIMITED_RESPONSE)
            config = self.config_loader()
            target = resolve_target(item, config)
            if target.team_id is not None:
                return self._run_team(target, config)
            return self._run_agent(target, config)
        except RateLimitedError as error:
            logger.warning("Rate limited message %s from %s", item.message_id, item.sender)
            return ItemOutcome(text=str(error), agent_id=None, ok=False, rate_limited=True)
        except InvocationError as error:
            return ItemOutcome(
                text=f"Error from @{error.agent_id} ({error.mode}): {error}",
                agent_id=error.agent_id or None,
                ok=False,
            )
        except ConfigurationError as error:
            logger.warning("Cannot route message %s: %s", item.message_id, error)
            return ItemOutcome(
                text=f"Configuration error: {error}",
                agent_id=target.agent_id if target is not None else None,
                ok=False,
            )
        except RelayError as error:
            logger.warning("Message %s failed: %s", item.message_id, error)
            return ItemOutcome(text=f"Error: {error}", agent_id=None, ok=False)
        except Exception:
            logger.exception("Unexpected failure while processing %s", item.message_id)
            return ItemOutcome(text=GENERIC_ERROR_RESPONSE, agent_id=None, ok=False)

    def _run_agent(self, target: RoutingTarget, config: RelayConfig) -> ItemOutcome:
        agent_id = target.agent_id or ""
        agent = config.agents[agent_id]
        self.events.emit(EventType.AGENT_ROUTED, agentId=agent_id, isTeamRouted=False)
        text = self._invoke(agent, target.message)
        return ItemOutcome(text=text, agent_id=agent_id, ok=True)

    def _run_team(self, target: RoutingTarget, config: RelayConfig) -> ItemOutcome:
        team = config.teams[target.team_id or ""]
        self.events.emit(
            EventType.AGENT_ROUTED,
            agentId=team.leader_agent,
            isTeamRouted=True,
            teamId=team.team_id,
        )
        execution = self.chain.run(
            team,
            target.message,
            agents=config.agents,
            invoke=self._invoke,
        )
        last_agent = execution.steps[-1].agent_id if execution.steps else None
        return ItemOutcome(text=execution.final_response, agent_id=last_agent, ok=True)

    def _invoke(self, agent: AgentDescriptor, message: str) -> str:
        reset = self.reset_signal.consume(agent.agent_id)
        return self.engine.invoke(agent, message, reset=reset)

    def _claim_new(self) -> list[QueuedWorkItem]:
        return [queued for queued in self.store.poll_new() if self.store.claim(queued)]

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Received %s, finishing in-flight items", name)
            self.request_stop()

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def _is_heartbeat(item: WorkItem) -> bool:
    return item.channel == HEARTBEAT_CHANNEL or item.command == "heartbeat"
