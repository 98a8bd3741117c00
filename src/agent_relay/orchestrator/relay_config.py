"""Agent and team definitions loaded from the settings document."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agent_relay.orchestrator.errors import ConfigurationError
from agent_relay.orchestrator.models import (
    AgentDescriptor,
    HeartbeatMode,
    InvokeMode,
    Provider,
    TeamDescriptor,
)

logger = logging.getLogger(__name__)

DEFAULT_GLOBAL_HEARTBEAT_INTERVAL = 3600


@dataclass(slots=True)
class RelayConfig:
    """Snapshot of ``agents`` and ``teams`` from ``settings.json``."""

    agents: dict[str, AgentDescriptor] = field(default_factory=dict)
    teams: dict[str, TeamDescriptor] = field(default_factory=dict)
    default_agent: str | None = None
    heartbeat_interval: int = DEFAULT_GLOBAL_HEARTBEAT_INTERVAL

    def resolve_default_agent(self) -> str | None:
        if self.default_agent is not None:
            return self.default_agent
        return next(iter(self.agents), None)

    def heartbeat_agents(self) -> list[AgentDescriptor]:
        """Agents that opted into heartbeats, in configuration order."""

        return [agent for agent in self.agents.values() if agent.heartbeat_interval is not None]


def load_relay_config(path: Path) -> RelayConfig:
    """Read and validate the settings document.

    A missing file yields an empty configuration; an unreadable or invalid
    one raises ``ConfigurationError``.
    """

    if not path.exists():
        logger.warning("Settings document not found: %s", path)
        return RelayConfig()
    try:
        raw = json.loads(path.read_text("utf-8"))
    except (OSError, json.JSONDecodeError) as error:
        raise ConfigurationError(f"Cannot read settings document {path}: {error}") from error
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Settings document {path} must be a JSON object")
    return parse_relay_config(raw)


def parse_relay_config(raw: dict[str, Any]) -> RelayConfig:
    """Build a validated ``RelayConfig`` from a decoded settings document."""

    raw_agents = raw.get("agents") or {}
    raw_teams = raw.get("teams") or {}
    if not isinstance(raw_agents, dict):
        raise ConfigurationError("settings.agents must be an object")
    if not isinstance(raw_teams, dict):
        raise ConfigurationError("settings.teams must be an object")

    global_interval = _global_heartbeat_interval(raw)
    agents: dict[str, AgentDescriptor] = {}
    for agent_id, value in raw_agents.items():
        normalized = _normalize_id(agent_id)
        agents[normalized] = _parse_agent(normalized, value)
    teams = {
        _normalize_id(team_id): _parse_team(_normalize_id(team_id), value)
        for team_id, value in raw_teams.items()
    }

    overlapping = sorted(set(agents) & set(teams))
    if overlapping:
        raise ConfigurationError(
            f"Ids used for both an agent and a team: {', '.join(overlapping)}",
        )

    default_agent = None
    routing = raw.get("routing")
    if isinstance(routing, dict) and routing.get("default_agent") is not None:
        default_agent = _normalize_id(str(routing["default_agent"]))
        if default_agent not in agents:
            raise ConfigurationError(
                f"routing.default_agent={default_agent!r} is not a configured agent",
            )

    return RelayConfig(
        agents=agents,
        teams=teams,
        default_agent=default_agent,
        heartbeat_interval=global_interval,
    )


def _global_heartbeat_interval(raw: dict[str, Any]) -> int:
    monitoring = raw.get("monitoring")
    if not isinstance(monitoring, dict) or monitoring.get("heartbeat_interval") is None:
        return DEFAULT_GLOBAL_HEARTBEAT_INTERVAL
    return _positive_int(monitoring["heartbeat_interval"], "monitoring.heartbeat_interval")


def _parse_agent(agent_id: str, raw: object) -> AgentDescriptor:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"agents.{agent_id} must be an object")

    provider_raw = str(raw.get("provider") or Provider.ANTHROPIC.value).strip().lower()
    try:
        provider = Provider(provider_raw)
    except ValueError as error:
        raise ConfigurationError(
            f"agents.{agent_id}.provider={provider_raw!r} is not supported. "
            f"Use one of: {', '.join(item.value for item in Provider)}.",
        ) from error

    mode_raw = str(raw.get("invoke_mode") or InvokeMode.LOCAL.value).strip().lower()
    try:
        invoke_mode = InvokeMode(mode_raw)
    except ValueError as error:
        raise ConfigurationError(
            f"agents.{agent_id}.invoke_mode={mode_raw!r} must be 'local' or 'remote'",
        ) from error

    heartbeat_mode_raw = str(raw.get("heartbeat_mode") or HeartbeatMode.CLAUDE.value)
    try:
        heartbeat_mode = HeartbeatMode(heartbeat_mode_raw.strip().lower())
    except ValueError as error:
        raise ConfigurationError(
            f"agents.{agent_id}.heartbeat_mode={heartbeat_mode_raw!r} "
            "must be 'claude' or 'script'",
        ) from error

    # Only a non-null interval opts the agent into heartbeats.
    heartbeat_interval: int | None = None
    if raw.get("heartbeat_interval") is not None:
        heartbeat_interval = _positive_int(
            raw["heartbeat_interval"],
            f"agents.{agent_id}.heartbeat_interval",
        )

    return AgentDescriptor(
        agent_id=agent_id,
        name=str(raw.get("name") or agent_id),
        provider=provider,
        model=str(raw.get("model") or "").strip(),
        working_directory=str(raw.get("working_directory") or "").strip(),
        invoke_mode=invoke_mode,
        remote_host=_optional_str(raw.get("remote_host")),
        remote_user=_optional_str(raw.get("remote_user")),
        remote_project_root=_optional_str(raw.get("remote_project_root")),
        remote_env_file=_optional_str(raw.get("remote_env_file")),
        heartbeat_interval=heartbeat_interval,
        heartbeat_mode=heartbeat_mode,
    )


def _parse_team(team_id: str, raw: object) -> TeamDescriptor:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"teams.{team_id} must be an object")
    members_raw = raw.get("agents")
    if not isinstance(members_raw, list) or not members_raw:
        raise ConfigurationError(f"teams.{team_id}.agents must be a non-empty array")
    members = tuple(_normalize_id(str(member)) for member in members_raw)
    leader = _normalize_id(str(raw.get("leader_agent") or members[0]))
    if leader not in members:
        raise ConfigurationError(
            f"teams.{team_id}.leader_agent={leader!r} is not a member of the team",
        )
    return TeamDescriptor(
        team_id=team_id,
        name=str(raw.get("name") or team_id),
        agents=members,
        leader_agent=leader,
    )


def _positive_int(value: object, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be a positive integer")
    try:
        parsed = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError) as error:
        raise ConfigurationError(f"{name} must be a positive integer") from error
    if parsed <= 0:
        raise ConfigurationError(f"{name} must be a positive integer")
    return parsed


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _normalize_id(value: str) -> str:
    return value.strip().lower()
