"""Sequential hand-off of one request through the members of a team."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Protocol

from agent_relay.orchestrator.errors import ChainConfigurationError
from agent_relay.orchestrator.events import EventEmitter
from agent_relay.orchestrator.models import (
    AgentDescriptor,
    ChainExecution,
    ChainStep,
    EventType,
    TeamDescriptor,
)

logger = logging.getLogger(__name__)


class AgentInvoker(Protocol):
    """Callable seam the chain uses to run one member."""

    def __call__(self, agent: AgentDescriptor, message: str) -> str: ...


class TeamChainOrchestrator:
    """Runs a team's members in order, feeding each output to the next member.

    Only one chain per team runs at a time; chains of different teams are
    independent. A failing step aborts the chain and re-raises after the
    ``team_chain_end`` event records the failure.
    """

    def __init__(
        self,
        *,
        events: EventEmitter,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.events = events
        self._clock = clock
        self._team_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def run(
        self,
        team: TeamDescriptor,
        message: str,
        *,
        agents: dict[str, AgentDescriptor],
        invoke: AgentInvoker,
    ) -> ChainExecution:
        missing = tuple(agent_id for agent_id in team.agents if agent_id not in agents)
        if missing:
            raise ChainConfigurationError(team.team_id, missing)

        with self._lock_for(team.team_id):
            return self._run_locked(team, message, agents=agents, invoke=invoke)

    def _run_locked(
        self,
        team: TeamDescriptor,
        message: str,
        *,
        agents: dict[str, AgentDescriptor],
        invoke: AgentInvoker,
    ) -> ChainExecution:
        execution = ChainExecution(
            team_id=team.team_id,
            agents=team.agents,
            started_at=self._clock(),
        )
        members = list(team.agents)
        self.events.emit(EventType.TEAM_CHAIN_START, teamName=team.name, agents=members)
        logger.info("Team @%s chain started: %s", team.team_id, " -> ".join(members))

        current_input = message
        for index, agent_id in enumerate(members):
            step = index + 1
            execution.current_step = step
            self.events.emit(EventType.CHAIN_STEP_START, agentId=agent_id, step=step)
            try:
                response = invoke(agents[agent_id], current_input)
            except Exception as error:
                logger.warning(
                    "Team @%s chain failed at step %d (@%s): %s",
                    team.team_id,
                    step,
                    agent_id,
                    error,
                )
                self.events.emit(
                    EventType.TEAM_CHAIN_END,
                    agents=members,
                    status="failed",
                    failedAgent=agent_id,
                    step=step,
                )
                raise
            execution.steps.append(ChainStep(agent_id=agent_id, response=response))
            self.events.emit(
                EventType.CHAIN_STEP_DONE,
                agentId=agent_id,
                step=step,
                responseLength=len(response),
                responseText=response,
            )
            if index + 1 < len(members):
                self.events.emit(
                    EventType.CHAIN_HANDOFF,
                    fromAgent=agent_id,
                    toAgent=members[index + 1],
                    step=step,
                )
            current_input = response

        self.events.emit(EventType.TEAM_CHAIN_END, agents=members, status="completed")
        logger.info(
            "Team @%s chain completed in %.1fs",
            team.team_id,
            self._clock() - execution.started_at,
        )
        return execution

    def _lock_for(self, team_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._team_locks.get(team_id)
            if lock is None:
                lock = threading.Lock()
                self._team_locks[team_id] = lock
            return lock
