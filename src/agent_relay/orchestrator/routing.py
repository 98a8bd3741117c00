"""Model resolution and work item target routing."""

from __future__ import annotations

import re

from agent_relay.orchestrator.errors import ConfigurationError
from agent_relay.orchestrator.models import Provider, RoutingTarget, WorkItem
from agent_relay.orchestrator.relay_config import RelayConfig

CLAUDE_MODEL_IDS: dict[str, str] = {
    "sonnet": "claude-sonnet-4-5",
    "opus": "claude-opus-4-6",
    "claude-sonnet-4-5": "claude-sonnet-4-5",
    "claude-opus-4-6": "claude-opus-4-6",
}

CODEX_MODEL_IDS: dict[str, str] = {
    "gpt-5.2": "gpt-5.2",
    "gpt-5.3-codex": "gpt-5.3-codex",
}

MODEL_IDS_BY_PROVIDER: dict[Provider, dict[str, str]] = {
    Provider.ANTHROPIC: CLAUDE_MODEL_IDS,
    Provider.OPENAI: CODEX_MODEL_IDS,
}

_MENTION = re.compile(r"^\s*@([A-Za-z0-9_\-]+)\s*")


def resolve_model(provider: Provider, model: str) -> str:
    """Map a short model name to a full id; unknown names pass through unchanged."""

    name = model.strip()
    if not name:
        return ""
    return MODEL_IDS_BY_PROVIDER[provider].get(name.lower(), name)


def resolve_target(item: WorkItem, config: RelayConfig) -> RoutingTarget:
    """Decide whether a work item goes to one agent or to a team.

    Explicit ``team``/``agent`` fields must name configured ids. A leading
    ``@id`` mention in the message routes to that agent or team and is
    stripped; unknown mentions leave the message for the default agent.
    """

    if item.team is not None:
        team_id = item.team.strip().lower()
        if team_id not in config.teams:
            raise ConfigurationError(f"Unknown team @{team_id}")
        return RoutingTarget(agent_id=None, team_id=team_id, message=item.message)

    if item.agent is not None:
        target_id = item.agent.strip().lower()
        if target_id in config.teams:
            return RoutingTarget(agent_id=None, team_id=target_id, message=item.message)
        if target_id in config.agents:
            return RoutingTarget(agent_id=target_id, team_id=None, message=item.message)
        raise ConfigurationError(f"Unknown agent @{target_id}")

    match = _MENTION.match(item.message)
    if match is not None:
        mentioned = match.group(1).lower()
        remainder = item.message[match.end() :]
        if mentioned in config.teams:
            return RoutingTarget(agent_id=None, team_id=mentioned, message=remainder)
        if mentioned in config.agents:
            return RoutingTarget(agent_id=mentioned, team_id=None, message=remainder)

    default_agent = config.resolve_default_agent()
    if default_agent is None:
        raise ConfigurationError("No agents configured; cannot route message")
    return RoutingTarget(agent_id=default_agent, team_id=None, message=item.message)
