"""Domain models for the work queue, agents, teams, and chains."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class Provider(str, Enum):
    """Closed set of CLI providers an agent can run on."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


class InvokeMode(str, Enum):
    """Where the agent CLI process runs."""

    LOCAL = "local"
    REMOTE = "remote"


class HeartbeatMode(str, Enum):
    """What a heartbeat fire does for an agent."""

    CLAUDE = "claude"
    SCRIPT = "script"


class FailureClass(str, Enum):
    """Normalized failure classes used by retry policy and responses."""

    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    CONFIGURATION = "configuration"
    PROCESS = "process"
    RATE_LIMITED = "rate_limited"
    CONTRACT = "contract"
    NON_RETRYABLE = "non_retryable"


class EventType(str, Enum):
    """Closed set of observability event types."""

    PROCESSOR_START = "processor_start"
    MESSAGE_RECEIVED = "message_received"
    AGENT_ROUTED = "agent_routed"
    TEAM_CHAIN_START = "team_chain_start"
    CHAIN_STEP_START = "chain_step_start"
    CHAIN_STEP_DONE = "chain_step_done"
    CHAIN_HANDOFF = "chain_handoff"
    TEAM_CHAIN_END = "team_chain_end"
    RESPONSE_READY = "response_ready"


@dataclass(slots=True)
class WorkItem:
    """One request handed to the orchestrator by a producer."""

    message_id: str
    channel: str
    sender: str
    message: str
    timestamp: int
    sender_id: str | None = None
    agent: str | None = None
    command: str | None = None
    team: str | None = None
    files: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ResponseItem:
    """Result of processing one work item."""

    message_id: str
    channel: str
    sender: str
    message: str
    original_message: str
    timestamp: int
    agent: str | None = None
    files: list[str] = field(default_factory=list)


@dataclass(slots=True)
class QueuedWorkItem:
    """Parsed work item together with the file it was read from."""

    item: WorkItem
    path: Path


@dataclass(slots=True, frozen=True)
class AgentDescriptor:
    """Static configuration of one agent."""

    agent_id: str
    name: str
    provider: Provider = Provider.ANTHROPIC
    model: str = ""
    working_directory: str = ""
    invoke_mode: InvokeMode = InvokeMode.LOCAL
    remote_host: str | None = None
    remote_user: str | None = None
    remote_project_root: str | None = None
    remote_env_file: str | None = None
    heartbeat_interval: int | None = None
    heartbeat_mode: HeartbeatMode = HeartbeatMode.CLAUDE


@dataclass(slots=True, frozen=True)
class TeamDescriptor:
    """Ordered set of agents that process one request in sequence."""

    team_id: str
    name: str
    agents: tuple[str, ...]
    leader_agent: str


@dataclass(slots=True)
class ChainStep:
    """Output of one agent inside a chain run."""

    agent_id: str
    response: str


@dataclass(slots=True)
class ChainExecution:
    """Transient record of one team chain run."""

    team_id: str
    agents: tuple[str, ...]
    started_at: float
    steps: list[ChainStep] = field(default_factory=list)
    current_step: int = 0

    @property
    def final_response(self) -> str:
        if not self.steps:
            return ""
        return self.steps[-1].response


@dataclass(slots=True)
class RoutingTarget:
    """Resolved destination of a work item."""

    agent_id: str | None
    team_id: str | None
    message: str

    @property
    def is_team(self) -> bool:
        return self.team_id is not None
