"""Timer-driven heartbeats: per-agent scripts or queued status prompts."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable
from pathlib import Path

from agent_relay.config import HeartbeatSettings
from agent_relay.http.webhook import NotificationSink
from agent_relay.orchestrator.backend import ProcessRunner, ProcessRunRequest, SubprocessRunner
from agent_relay.orchestrator.contracts import write_text_atomic
from agent_relay.orchestrator.errors import RelayError
from agent_relay.orchestrator.models import AgentDescriptor, HeartbeatMode, WorkItem
from agent_relay.orchestrator.queue_store import WorkItemStore
from agent_relay.orchestrator.relay_config import RelayConfig
from agent_relay.orchestrator.sanitization import sanitize_preview

logger = logging.getLogger(__name__)

HEARTBEAT_CHANNEL = "heartbeat"
HEARTBEAT_SENDER = "System"
HEARTBEAT_COMMAND = "heartbeat"


class HeartbeatStateStore:
    """Last-fired epoch seconds per agent, one ``<agent>.last`` file each."""

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir
        self._lock = threading.Lock()

    def last_fired(self, agent_id: str) -> int:
        try:
            return int(self._path(agent_id).read_text("utf-8").strip() or 0)
        except FileNotFoundError:
            return 0
        except (OSError, ValueError) as error:
            logger.warning("Unreadable heartbeat state for @%s: %s", agent_id, error)
            return 0

    def record(self, agent_id: str, fired_at: int) -> int:
        """Store ``fired_at`` unless it would move the record backwards."""

        with self._lock:
            current = self.last_fired(agent_id)
            if fired_at <= current:
                return current
            write_text_atomic(self._path(agent_id), f"{fired_at}\n")
            return fired_at

    def _path(self, agent_id: str) -> Path:
        return self.state_dir / f"{agent_id}.last"


class HeartbeatScheduler:
    """Fires heartbeats for agents whose interval has elapsed.

    Each tick reloads the settings document. A due agent in ``script`` mode
    runs ``<workspace>/<agent>/heartbeat.sh`` and forwards its output; in
    ``claude`` mode a status prompt is queued for the processor and any
    response that arrives within the wait window is forwarded.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: HeartbeatSettings,
        config_loader: Callable[[], RelayConfig],
        store: WorkItemStore,
        state: HeartbeatStateStore,
        workspace_dir: Path,
        notifier: NotificationSink | None = None,
        runner: ProcessRunner | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.config_loader = config_loader
        self.store = store
        self.state = state
        self.workspace_dir = workspace_dir
        self.notifier = notifier
        self.runner = runner or SubprocessRunner()
        self._clock = clock
        self._sleep = sleep

    def due_agents(self, config: RelayConfig, now: int) -> list[AgentDescriptor]:
        due: list[AgentDescriptor] = []
        for agent in config.heartbeat_agents():
            interval = agent.heartbeat_interval or config.heartbeat_interval
            elapsed = now - self.state.last_fired(agent.agent_id)
            if elapsed >= interval:
                due.append(agent)
        return due

    def tick(self, now: int | None = None) -> list[str]:
        """Fire every due agent once; return the ids that fired."""

        tick_time = int(self._clock()) if now is None else now
        try:
            config = self.config_loader()
        except RelayError as error:
            logger.warning("Heartbeat tick skipped, settings unreadable: %s", error)
            return []

        fired: list[str] = []
        for agent in self.due_agents(config, tick_time):
            logger.info(
                "Heartbeat due for @%s (mode: %s)",
                agent.agent_id,
                agent.heartbeat_mode.value,
            )
            try:
                self.fire(agent, tick_time)
            except (RelayError, OSError) as error:
                logger.warning("Heartbeat for @%s failed: %s", agent.agent_id, error)
            except Exception:
                logger.exception("Heartbeat for @%s crashed", agent.agent_id)
            finally:
                self.state.record(agent.agent_id, tick_time)
            fired.append(agent.agent_id)
        return fired

    def fire(self, agent: AgentDescriptor, now: int) -> None:
        if agent.heartbeat_mode == HeartbeatMode.SCRIPT:
            self._fire_script(agent)
        else:
            self._fire_prompt(agent, now)

    def run(self, stop_event: threading.Event) -> None:
        """Tick until ``stop_event`` is set."""

        logger.info("Heartbeat scheduler started (tick: %.0fs)", self.settings.tick_seconds)
        while not stop_event.wait(self.settings.tick_seconds):
            try:
                self.tick()
            except Exception:
                logger.exception("Heartbeat tick crashed")
        logger.info("Heartbeat scheduler stopped")

    def start_in_thread(self, stop_event: threading.Event) -> threading.Thread:
        thread = threading.Thread(
            target=self.run,
            args=(stop_event,),
            name="agent-relay-heartbeat",
            daemon=True,
        )
        thread.start()
        return thread

    def heartbeat_prompt(self, agent_id: str) -> str:
        prompt_path = self.workspace_dir / agent_id / "heartbeat.md"
        try:
            prompt = prompt_path.read_text("utf-8").strip()
        except FileNotFoundError:
            prompt = ""
        return prompt or self.settings.default_prompt

    def _fire_script(self, agent: AgentDescriptor) -> None:
        agent_dir = self.workspace_dir / agent.agent_id
        script = agent_dir / "heartbeat.sh"
        if not script.is_file() or not os.access(script, os.X_OK):
            logger.warning("No executable heartbeat.sh at %s", script)
            return
        result = self.runner.run(
            ProcessRunRequest(
                argv=[str(script.resolve())],
                timeout_seconds=self.settings.script_timeout_seconds,
                cwd=agent_dir,
            ),
        )
        if result.timed_out:
            logger.warning("Heartbeat script for @%s timed out", agent.agent_id)
        output = (result.stdout + result.stderr).strip()
        logger.info("Heartbeat script @%s output: %s", agent.agent_id, sanitize_preview(output))
        if output:
            self._notify(output)

    def _fire_prompt(self, agent: AgentDescriptor, now: int) -> None:
        message_id = f"heartbeat_{agent.agent_id}_{now}_{os.getpid()}"
        self.store.enqueue(
            WorkItem(
                message_id=message_id,
                channel=HEARTBEAT_CHANNEL,
                sender=HEARTBEAT_SENDER,
                sender_id=f"heartbeat_{agent.agent_id}",
                message=self.heartbeat_prompt(agent.agent_id),
                timestamp=now * 1000,
                agent=agent.agent_id,
                command=HEARTBEAT_COMMAND,
            ),
        )
        if self.settings.response_wait_seconds > 0:
            self._sleep(self.settings.response_wait_seconds)
        responses = self.store.collect_responses(
            message_id=message_id,
            channel=HEARTBEAT_CHANNEL,
        )
        if not responses:
            logger.info("No heartbeat response from @%s yet (%s)", agent.agent_id, message_id)
            return
        for response in responses:
            if response.message:
                text = response.message[: self.settings.max_notification_chars]
                self._notify(f"**@{agent.agent_id} heartbeat:**\n{text}")

    def _notify(self, text: str) -> None:
        if self.notifier is None:
            logger.debug("No notification sink configured; heartbeat output not forwarded")
            return
        if not self.notifier.send(text):
            logger.warning("Failed to forward heartbeat notification")
