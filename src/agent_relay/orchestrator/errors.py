"""Error hierarchy with structural failure classes."""

from __future__ import annotations

from agent_relay.orchestrator.models import FailureClass


class RelayError(RuntimeError):
    """Base error carrying a failure class for retry and response policy."""

    failure_class: FailureClass = FailureClass.NON_RETRYABLE

    def __init__(self, message: str, *, failure_class: FailureClass | None = None) -> None:
        super().__init__(message)
        if failure_class is not None:
            self.failure_class = failure_class

    @property
    def transient(self) -> bool:
        return self.failure_class in {FailureClass.TRANSIENT, FailureClass.TIMEOUT}


class ConfigurationError(RelayError):
    """Invalid or incomplete agent/team configuration."""

    failure_class = FailureClass.CONFIGURATION


class AgentConfigurationError(ConfigurationError):
    """Agent descriptor cannot be invoked as configured."""

    def __init__(self, agent_id: str, message: str) -> None:
        super().__init__(message)
        self.agent_id = agent_id


class ChainConfigurationError(ConfigurationError):
    """Team references agents that are not configured."""

    def __init__(self, team_id: str, missing: tuple[str, ...]) -> None:
        super().__init__(
            f"Team @{team_id} references unknown agent(s): "
            f"{', '.join('@' + agent_id for agent_id in missing)}",
        )
        self.team_id = team_id
        self.missing = missing


class ContractError(RelayError):
    """Work item or response file violates the JSON contract."""

    failure_class = FailureClass.CONTRACT


class InvocationError(RelayError):
    """Agent process could not produce a response."""

    failure_class = FailureClass.PROCESS

    def __init__(
        self,
        message: str,
        *,
        agent_id: str = "",
        mode: str = "local",
        failure_class: FailureClass | None = None,
    ) -> None:
        super().__init__(message, failure_class=failure_class)
        self.agent_id = agent_id
        self.mode = mode


class AgentProcessError(InvocationError):
    """Agent process exited with a non-zero code."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int,
        stderr: str = "",
        agent_id: str = "",
        mode: str = "local",
        failure_class: FailureClass | None = None,
    ) -> None:
        super().__init__(message, agent_id=agent_id, mode=mode, failure_class=failure_class)
        self.exit_code = exit_code
        self.stderr = stderr


class InvocationTimeoutError(InvocationError):
    """Agent process exceeded its time budget and was killed."""

    failure_class = FailureClass.TIMEOUT


class RateLimitedError(RelayError):
    """Invocation refused by the sliding-window rate limiter."""

    failure_class = FailureClass.RATE_LIMITED
