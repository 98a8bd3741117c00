"""Runtime configuration for the relay processor, invocations, and heartbeats."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

DEFAULT_HEARTBEAT_PROMPT = "Quick status check: Any pending tasks? Keep response brief."


@dataclass(slots=True)
class ProcessorSettings:
    """Queue poll loop and admission settings."""

    poll_interval_seconds: float = 1.0
    max_workers: int = 4
    deletion_grace_seconds: float = 0.2
    rate_limit_max_requests: int = 5
    rate_limit_window_seconds: float = 60.0
    heartbeat_max_requests: int = 5
    embed_heartbeat: bool = False


@dataclass(slots=True)
class InvocationSettings:
    """Agent CLI invocation settings."""

    local_timeout_seconds: float = 300.0
    remote_timeout_seconds: float = 600.0
    claude_command: tuple[str, ...] = ("claude",)
    codex_command: tuple[str, ...] = ("codex",)
    ssh_command: tuple[str, ...] = ("ssh",)
    max_retries: int = 3
    retry_base_seconds: float = 5.0


@dataclass(slots=True)
class HeartbeatSettings:
    """Heartbeat scheduler settings."""

    tick_seconds: float = 60.0
    response_wait_seconds: float = 5.0
    script_timeout_seconds: float = 120.0
    max_notification_chars: int = 1_800
    default_prompt: str = DEFAULT_HEARTBEAT_PROMPT


@dataclass(slots=True)
class NotifierSettings:
    """Webhook notification sink settings."""

    webhook_url: str = ""
    max_message_chars: int = 2_000
    chunk_chars: int = 1_900
    request_timeout_seconds: float = 10.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    home_dir: Path = Path(".agent-relay")
    workspace_dir: Path = Path("workspace")
    processor: ProcessorSettings = field(default_factory=ProcessorSettings)
    invocation: InvocationSettings = field(default_factory=InvocationSettings)
    heartbeat: HeartbeatSettings = field(default_factory=HeartbeatSettings)
    notifier: NotifierSettings = field(default_factory=NotifierSettings)

    @property
    def settings_path(self) -> Path:
        return self.home_dir / "settings.json"

    @property
    def queue_dir(self) -> Path:
        return self.home_dir / "queue"

    @property
    def events_dir(self) -> Path:
        return self.home_dir / "events"

    @property
    def heartbeat_state_dir(self) -> Path:
        return self.home_dir / "heartbeat-state"

    @classmethod
    def from_env(cls, home_dir: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            home_dir=home_dir or _default_home_dir(),
            workspace_dir=Path(os.getenv("AGENT_RELAY_WORKSPACE", "workspace")),
            processor=ProcessorSettings(
                poll_interval_seconds=float(
                    os.getenv("AGENT_RELAY_POLL_INTERVAL_SECONDS", "1.0"),
                ),
                max_workers=int(os.getenv("AGENT_RELAY_MAX_WORKERS", "4")),
                deletion_grace_seconds=float(
                    os.getenv("AGENT_RELAY_DELETION_GRACE_SECONDS", "0.2"),
                ),
                rate_limit_max_requests=int(
                    os.getenv("AGENT_RELAY_RATE_LIMIT_MAX_REQUESTS", "5"),
                ),
                rate_limit_window_seconds=float(
                    os.getenv("AGENT_RELAY_RATE_LIMIT_WINDOW_SECONDS", "60"),
                ),
                heartbeat_max_requests=int(
                    os.getenv("AGENT_RELAY_HEARTBEAT_MAX_REQUESTS", "5"),
                ),
                embed_heartbeat=_env_bool("AGENT_RELAY_EMBED_HEARTBEAT", default=False),
            ),
            invocation=InvocationSettings(
                local_timeout_seconds=float(
                    os.getenv("AGENT_RELAY_LOCAL_TIMEOUT_SECONDS", "300"),
                ),
                remote_timeout_seconds=float(
                    os.getenv("AGENT_RELAY_REMOTE_TIMEOUT_SECONDS", "600"),
                ),
                claude_command=_env_command("AGENT_RELAY_CLAUDE_COMMAND", "claude"),
                codex_command=_env_command("AGENT_RELAY_CODEX_COMMAND", "codex"),
                ssh_command=_env_command("AGENT_RELAY_SSH_COMMAND", "ssh"),
                max_retries=int(os.getenv("AGENT_RELAY_MAX_RETRIES", "3")),
                retry_base_seconds=float(os.getenv("AGENT_RELAY_RETRY_BASE_SECONDS", "5.0")),
            ),
            heartbeat=HeartbeatSettings(
                tick_seconds=float(os.getenv("AGENT_RELAY_HEARTBEAT_TICK_SECONDS", "60")),
                response_wait_seconds=float(
                    os.getenv("AGENT_RELAY_HEARTBEAT_RESPONSE_WAIT_SECONDS", "5"),
                ),
                script_timeout_seconds=float(
                    os.getenv("AGENT_RELAY_HEARTBEAT_SCRIPT_TIMEOUT_SECONDS", "120"),
                ),
                default_prompt=os.getenv(
                    "AGENT_RELAY_HEARTBEAT_PROMPT",
                    DEFAULT_HEARTBEAT_PROMPT,
                ),
            ),
            notifier=NotifierSettings(
                webhook_url=os.getenv(
                    "AGENT_RELAY_WEBHOOK_URL",
                    os.getenv("DISCORD_WEBHOOK_URL", ""),
                ).strip(),
                request_timeout_seconds=float(
                    os.getenv("AGENT_RELAY_WEBHOOK_TIMEOUT_SECONDS", "10"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if intervals, budgets or URLs are invalid."""

        if self.processor.poll_interval_seconds <= 0:
            raise ValueError("AGENT_RELAY_POLL_INTERVAL_SECONDS must be > 0.")
        if self.processor.max_workers <= 0:
            raise ValueError("AGENT_RELAY_MAX_WORKERS must be > 0.")
        if self.processor.rate_limit_max_requests <= 0:
            raise ValueError("AGENT_RELAY_RATE_LIMIT_MAX_REQUESTS must be > 0.")
        if self.processor.rate_limit_window_seconds <= 0:
            raise ValueError("AGENT_RELAY_RATE_LIMIT_WINDOW_SECONDS must be > 0.")
        if self.processor.heartbeat_max_requests <= 0:
            raise ValueError("AGENT_RELAY_HEARTBEAT_MAX_REQUESTS must be > 0.")
        if self.invocation.local_timeout_seconds <= 0:
            raise ValueError("AGENT_RELAY_LOCAL_TIMEOUT_SECONDS must be > 0.")
        if self.invocation.remote_timeout_seconds <= 0:
            raise ValueError("AGENT_RELAY_REMOTE_TIMEOUT_SECONDS must be > 0.")
        if self.invocation.max_retries < 0:
            raise ValueError("AGENT_RELAY_MAX_RETRIES must be >= 0.")
        if self.invocation.retry_base_seconds < 0:
            raise ValueError("AGENT_RELAY_RETRY_BASE_SECONDS must be >= 0.")
        for name, command in (
            ("AGENT_RELAY_CLAUDE_COMMAND", self.invocation.claude_command),
            ("AGENT_RELAY_CODEX_COMMAND", self.invocation.codex_command),
            ("AGENT_RELAY_SSH_COMMAND", self.invocation.ssh_command),
        ):
            if not command:
                raise ValueError(f"{name} must not be empty.")
        if self.heartbeat.tick_seconds <= 0:
            raise ValueError("AGENT_RELAY_HEARTBEAT_TICK_SECONDS must be > 0.")
        if self.heartbeat.response_wait_seconds < 0:
            raise ValueError("AGENT_RELAY_HEARTBEAT_RESPONSE_WAIT_SECONDS must be >= 0.")
        if self.heartbeat.script_timeout_seconds <= 0:
            raise ValueError("AGENT_RELAY_HEARTBEAT_SCRIPT_TIMEOUT_SECONDS must be > 0.")
        if self.notifier.webhook_url:
            _validate_webhook_url(self.notifier.webhook_url)
        if not 0 < self.notifier.chunk_chars <= self.notifier.max_message_chars:
            raise ValueError("Webhook chunk size must be positive and within the message cap.")


def _default_home_dir() -> Path:
    explicit = os.getenv("AGENT_RELAY_HOME", "").strip()
    if explicit:
        return Path(explicit).expanduser()
    local = Path(".agent-relay")
    if (local / "settings.json").exists():
        return local
    return Path.home() / ".agent-relay"


def _env_command(name: str, default: str) -> tuple[str, ...]:
    return tuple(shlex.split(os.getenv(name, default)))


def _validate_webhook_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid webhook URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
