"""Controllers for relay CLI commands."""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from uuid import uuid4

from agent_relay.config import Settings
from agent_relay.http.webhook import WebhookNotifier
from agent_relay.orchestrator.chain import TeamChainOrchestrator
from agent_relay.orchestrator.errors import ConfigurationError, InvocationError
from agent_relay.orchestrator.events import EventEmitter, prune_events
from agent_relay.orchestrator.heartbeat import HeartbeatScheduler, HeartbeatStateStore
from agent_relay.orchestrator.invocation import InvocationEngine
from agent_relay.orchestrator.models import WorkItem
from agent_relay.orchestrator.processor import QueueProcessor
from agent_relay.orchestrator.queue_store import WorkItemStore
from agent_relay.orchestrator.rate_limit import SlidingWindowRateLimiter
from agent_relay.orchestrator.relay_config import load_relay_config
from agent_relay.orchestrator.reset_signal import ResetSignal
from agent_relay.orchestrator.routing import resolve_model


@dataclass(slots=True)
class ProcessorCommand:
    """CLI input for the queue processor."""

    home_dir: Path | None
    once: bool
    max_idle_polls: int | None = None
    with_heartbeat: bool | None = None


@dataclass(slots=True)
class HeartbeatCommand:
    """CLI input for the heartbeat scheduler."""

    home_dir: Path | None
    once: bool


@dataclass(slots=True)
class EnqueueCommand:
    """CLI input for queueing one work item."""

    home_dir: Path | None
    message: str
    channel: str
    sender: str
    agent: str | None = None
    team: str | None = None
    message_id: str | None = None


@dataclass(slots=True)
class ResponsesCommand:
    """CLI input for draining outgoing responses."""

    home_dir: Path | None
    message_id: str | None
    channel: str | None
    keep: bool


@dataclass(slots=True)
class ListCommand:
    """CLI input for agent/team listings."""

    home_dir: Path | None


@dataclass(slots=True)
class ResetCommand:
    """CLI input for conversation reset flags."""

    home_dir: Path | None
    agent: str | None


@dataclass(slots=True)
class InvokeCommand:
    """CLI input for a direct single-agent invocation (no queue)."""

    home_dir: Path | None
    agent: str
    message: str
    reset: bool


@dataclass(slots=True)
class EventsPruneCommand:
    """CLI input for stale event cleanup."""

    home_dir: Path | None
    max_age_hours: float


@dataclass(slots=True)
class CommandResult:
    """Output lines plus success flag for commands that can fail."""

    lines: list[str]
    success: bool


class OrchestratorCliController:
    """Wires settings into queue, processor, heartbeat, and inspection operations."""

    def run_processor(self, command: ProcessorCommand) -> list[str]:
        settings = _settings(command.home_dir)
        embed_heartbeat = (
            settings.processor.embed_heartbeat
            if command.with_heartbeat is None
            else command.with_heartbeat
        )
        with _notifier(settings) as notifier:
            processor = build_processor(settings)
            processor.start()
            stop_event = threading.Event()
            heartbeat_thread = None
            if embed_heartbeat and not command.once:
                heartbeat_thread = build_heartbeat(settings, notifier=notifier).start_in_thread(
                    stop_event,
                )
            try:
                summary = (
                    processor.run_once()
                    if command.once
                    else processor.run_loop(max_idle_polls=command.max_idle_polls)
                )
            finally:
                stop_event.set()
                if heartbeat_thread is not None:
                    heartbeat_thread.join(timeout=settings.heartbeat.tick_seconds)

        return [
            "Processor summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} rate_limited={summary.rate_limited} "
            f"idle_polls={summary.idle_polls}",
        ]

    def run_heartbeat(self, command: HeartbeatCommand) -> list[str]:
        settings = _settings(command.home_dir)
        with _notifier(settings) as notifier:
            scheduler = build_heartbeat(settings, notifier=notifier)
            if command.once:
                fired = scheduler.tick()
                return [f"Heartbeat fired: {', '.join('@' + agent for agent in fired) or 'none'}"]
            stop_event = threading.Event()
            try:
                scheduler.run(stop_event)
            except KeyboardInterrupt:
                stop_event.set()
        return ["Heartbeat scheduler stopped."]

    def enqueue(self, command: EnqueueCommand) -> list[str]:
        settings = _settings(command.home_dir)
        store = _store(settings)
        store.ensure_dirs()
        message_id = command.message_id or f"{command.channel}_{int(time.time())}_{uuid4().hex[:8]}"
        store.enqueue(
            WorkItem(
                message_id=message_id,
                channel=command.channel,
                sender=command.sender,
                sender_id=command.sender,
                message=command.message,
                timestamp=int(time.time() * 1000),
                agent=command.agent,
                team=command.team,
            ),
        )
        return [f"Work item queued: message_id={message_id} channel={command.channel}"]

    def responses(self, command: ResponsesCommand) -> list[str]:
        settings = _settings(command.home_dir)
        responses = _store(settings).collect_responses(
            message_id=command.message_id,
            channel=command.channel,
            delete=not command.keep,
        )
        if not responses:
            return ["No responses."]
        lines: list[str] = []
        for response in responses:
            agent = f"@{response.agent}" if response.agent else "-"
            lines.append(f"[{response.message_id}] {response.channel}/{response.sender} {agent}")
            lines.extend(f"  {line}" for line in response.message.splitlines() or [""])
        return lines

    def agents(self, command: ListCommand) -> list[str]:
        config = load_relay_config(_settings(command.home_dir).settings_path)
        if not config.agents:
            return ["No agents configured."]
        default_agent = config.resolve_default_agent()
        lines = ["Agents:"]
        for agent in config.agents.values():
            model = resolve_model(agent.provider, agent.model) or "default"
            marker = " (default)" if agent.agent_id == default_agent else ""
            heartbeat = (
                f" heartbeat={agent.heartbeat_interval}s/{agent.heartbeat_mode.value}"
                if agent.heartbeat_interval is not None
                else ""
            )
            lines.append(
                f"- @{agent.agent_id}{marker}: name={agent.name} "
                f"provider={agent.provider.value} model={model} "
                f"mode={agent.invoke_mode.value}{heartbeat}",
            )
        return lines

    def teams(self, command: ListCommand) -> list[str]:
        config = load_relay_config(_settings(command.home_dir).settings_path)
        if not config.teams:
            return ["No teams configured."]
        lines = ["Teams:"]
        for team in config.teams.values():
            chain = " -> ".join(f"@{agent_id}" for agent_id in team.agents)
            lines.append(f"- @{team.team_id}: name={team.name} leader=@{team.leader_agent} {chain}")
        return lines

    def reset(self, command: ResetCommand) -> list[str]:
        settings = _settings(command.home_dir)
        agent = command.agent.strip().lower() if command.agent else None
        if agent is not None:
            config = load_relay_config(settings.settings_path)
            if agent not in config.agents:
                raise ConfigurationError(f"Unknown agent @{agent}")
        ResetSignal(settings.home_dir).request(agent)
        target = f"@{agent}" if agent else "the next invoked agent"
        return [f"Conversation reset requested for {target}."]

    def invoke(self, command: InvokeCommand) -> CommandResult:
        settings = _settings(command.home_dir)
        config = load_relay_config(settings.settings_path)
        agent_id = command.agent.strip().lower()
        agent = config.agents.get(agent_id)
        if agent is None:
            raise ConfigurationError(f"Unknown agent @{agent_id}")
        engine = InvocationEngine(
            settings=settings.invocation,
            workspace_dir=settings.workspace_dir,
        )
        started = time.monotonic()
        try:
            response = engine.invoke(agent, command.message, reset=command.reset)
        except InvocationError as error:
            return CommandResult(
                lines=[
                    f"@{agent_id} FAILED ({error.failure_class.value}, {error.mode}): {error}",
                ],
                success=False,
            )
        elapsed = time.monotonic() - started
        return CommandResult(
            lines=[f"@{agent_id} OK ({elapsed:.1f}s)", response],
            success=True,
        )

    def prune_events(self, command: EventsPruneCommand) -> list[str]:
        settings = _settings(command.home_dir)
        removed = prune_events(settings.events_dir, max_age_seconds=command.max_age_hours * 3600)
        return [f"Pruned {removed} event file(s) older than {command.max_age_hours:g}h."]


def build_processor(settings: Settings) -> QueueProcessor:
    """Assemble a queue processor from settings."""

    events = EventEmitter(settings.events_dir)
    return QueueProcessor(
        store=_store(settings),
        engine=InvocationEngine(settings=settings.invocation, workspace_dir=settings.workspace_dir),
        chain=TeamChainOrchestrator(events=events),
        events=events,
        config_loader=partial(load_relay_config, settings.settings_path),
        reset_signal=ResetSignal(settings.home_dir),
        limiter=SlidingWindowRateLimiter(
            max_requests=settings.processor.rate_limit_max_requests,
            window_seconds=settings.processor.rate_limit_window_seconds,
        ),
        heartbeat_limiter=SlidingWindowRateLimiter(
            max_requests=settings.processor.heartbeat_max_requests,
            window_seconds=settings.processor.rate_limit_window_seconds,
        ),
        poll_interval_seconds=settings.processor.poll_interval_seconds,
        max_workers=settings.processor.max_workers,
    )


def build_heartbeat(
    settings: Settings,
    *,
    notifier: WebhookNotifier | None = None,
) -> HeartbeatScheduler:
    """Assemble a heartbeat scheduler from settings."""

    store = _store(settings)
    store.ensure_dirs()
    return HeartbeatScheduler(
        settings=settings.heartbeat,
        config_loader=partial(load_relay_config, settings.settings_path),
        store=store,
        state=HeartbeatStateStore(settings.heartbeat_state_dir),
        workspace_dir=settings.workspace_dir,
        notifier=notifier,
    )


def _settings(home_dir: Path | None) -> Settings:
    settings = Settings.from_env(home_dir=home_dir)
    settings.validate()
    return settings


def _store(settings: Settings) -> WorkItemStore:
    return WorkItemStore.under(
        settings.queue_dir,
        deletion_grace_seconds=settings.processor.deletion_grace_seconds,
    )


@contextmanager
def _notifier(settings: Settings) -> Iterator[WebhookNotifier | None]:
    if not settings.notifier.webhook_url:
        yield None
        return
    notifier = WebhookNotifier(
        url=settings.notifier.webhook_url,
        timeout_seconds=settings.notifier.request_timeout_seconds,
        max_message_chars=settings.notifier.max_message_chars,
        chunk_chars=settings.notifier.chunk_chars,
    )
    with notifier:
        yield notifier
