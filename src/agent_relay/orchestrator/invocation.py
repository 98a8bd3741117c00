"""Single-agent invocation of the claude/codex CLIs, locally or over ssh."""

from __future__ import annotations

import logging
import shlex
import time
from collections.abc import Callable
from pathlib import Path
from uuid import uuid4

from agent_relay.config import InvocationSettings
from agent_relay.orchestrator.backend import (
    ProcessRunner,
    ProcessRunRequest,
    ProcessRunResult,
    SubprocessRunner,
    extractor_for,
)
from agent_relay.orchestrator.errors import (
    AgentConfigurationError,
    AgentProcessError,
    InvocationError,
    InvocationTimeoutError,
)
from agent_relay.orchestrator.failure_classifier import classify_message
from agent_relay.orchestrator.models import AgentDescriptor, FailureClass, InvokeMode, Provider
from agent_relay.orchestrator.retry import with_retry
from agent_relay.orchestrator.routing import resolve_model
from agent_relay.orchestrator.sanitization import sanitize_preview

logger = logging.getLogger(__name__)

REMOTE_EXECUTABLES: dict[Provider, str] = {
    Provider.ANTHROPIC: "claude",
    Provider.OPENAI: "codex",
}
REMOTE_PROMPT_DIR = "/tmp"  # noqa: S108


class InvocationEngine:
    """Runs one agent CLI call per attempt and returns the extracted response.

    Transient failures (connection resets, timeouts, busy upstreams) are
    retried with exponential backoff; everything else propagates as an
    ``InvocationError`` subclass carrying the agent id and mode.
    """

    def __init__(
        self,
        *,
        settings: InvocationSettings,
        workspace_dir: Path,
        runner: ProcessRunner | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.workspace_dir = workspace_dir
        self.runner = runner or SubprocessRunner()
        self._sleep = sleep
        self._clock = clock

    def invoke(
        self,
        agent: AgentDescriptor,
        message: str,
        *,
        working_dir: str | None = None,
        reset: bool = False,
    ) -> str:
        mode = agent.invoke_mode.value
        if not message.strip():
            raise InvocationError(
                f"Cannot invoke @{agent.agent_id} with an empty message",
                agent_id=agent.agent_id,
                mode=mode,
                failure_class=FailureClass.CONFIGURATION,
            )

        if agent.invoke_mode == InvokeMode.REMOTE:
            _require_remote_fields(agent)

            def operation() -> str:
                return self._invoke_remote(agent, message, reset=reset)

        else:
            cwd = self.resolve_working_dir(agent, working_dir)

            def operation() -> str:
                return self._invoke_local(agent, message, cwd=cwd, reset=reset)

        logger.info(
            "Invoking @%s (%s, %s, reset=%s): %s",
            agent.agent_id,
            agent.provider.value,
            mode,
            reset,
            sanitize_preview(message),
        )
        try:
            response = with_retry(
                operation,
                max_retries=self.settings.max_retries,
                base_delay=self.settings.retry_base_seconds,
                label=f"invoke @{agent.agent_id}",
                sleep=self._sleep,
            )
        except InvocationError as error:
            # Runner launch failures do not know which agent they belong to.
            if not error.agent_id:
                error.agent_id = agent.agent_id
                error.mode = mode
            raise
        logger.info("@%s responded (%d chars)", agent.agent_id, len(response))
        return response

    def resolve_working_dir(self, agent: AgentDescriptor, working_dir: str | None = None) -> Path:
        """Absolute paths are used as-is; relative ones live under the workspace."""

        raw = (working_dir or agent.working_directory or "").strip()
        if not raw:
            path = self.workspace_dir / agent.agent_id
        else:
            candidate = Path(raw).expanduser()
            path = candidate if candidate.is_absolute() else self.workspace_dir / candidate
        path.mkdir(parents=True, exist_ok=True)
        return path.resolve()

    def build_provider_args(
        self,
        agent: AgentDescriptor,
        prompt: str,
        *,
        reset: bool,
    ) -> list[str]:
        """Provider flags with the prompt as the final argument."""

        model = resolve_model(agent.provider, agent.model)
        model_flags = ["--model", model] if model else []
        if agent.provider == Provider.OPENAI:
            resume = [] if reset else ["resume", "--last"]
            return [
                "exec",
                *resume,
                *model_flags,
                "--skip-git-repo-check",
                "--dangerously-bypass-approvals-and-sandbox",
                "--json",
                prompt,
            ]
        continue_flags = [] if reset else ["-c"]
        return [
            "--dangerously-skip-permissions",
            *model_flags,
            *continue_flags,
            "-p",
            prompt,
        ]

    def local_command(self, agent: AgentDescriptor, prompt: str, *, reset: bool) -> list[str]:
        executable = (
            self.settings.codex_command
            if agent.provider == Provider.OPENAI
            else self.settings.claude_command
        )
        return [*executable, *self.build_provider_args(agent, prompt, reset=reset)]

    def remote_script(self, agent: AgentDescriptor, prompt_path: str, *, reset: bool) -> str:
        """Shell command run on the remote host; the prompt never appears inline."""

        args = self.build_provider_args(agent, "", reset=reset)[:-1]
        command = " ".join(
            shlex.quote(part) for part in (REMOTE_EXECUTABLES[agent.provider], *args)
        )
        steps = [f"cd {shlex.quote(agent.remote_project_root or '')}"]
        if agent.remote_env_file:
            steps.append(f"{{ source {shlex.quote(agent.remote_env_file)} || true; }}")
        quoted_path = shlex.quote(prompt_path)
        steps.append(f"PROMPT=$(cat {quoted_path})")
        steps.append(f"rm -f {quoted_path}")
        steps.append(f'{command} "$PROMPT"')
        return " && ".join(steps)

    def _invoke_local(self, agent: AgentDescriptor, message: str, *, cwd: Path, reset: bool) -> str:
        timeout = self.settings.local_timeout_seconds
        result = self.runner.run(
            ProcessRunRequest(
                argv=self.local_command(agent, message, reset=reset),
                timeout_seconds=timeout,
                cwd=cwd,
            ),
        )
        _raise_for_result(result, agent=agent, timeout_seconds=timeout)
        return extractor_for(agent.provider).extract(result.stdout)

    def _invoke_remote(self, agent: AgentDescriptor, message: str, *, reset: bool) -> str:
        """Upload the prompt, then run the agent; both calls share one time budget."""

        timeout = self.settings.remote_timeout_seconds
        deadline = self._clock() + timeout
        target = f"{agent.remote_user}@{agent.remote_host}"
        prompt_path = f"{REMOTE_PROMPT_DIR}/agent-relay-prompt-{uuid4().hex}.txt"

        upload = self.runner.run(
            ProcessRunRequest(
                argv=[*self.settings.ssh_command, target, f"cat > {shlex.quote(prompt_path)}"],
                timeout_seconds=timeout,
                stdin_text=message,
            ),
        )
        _raise_for_result(upload, agent=agent, timeout_seconds=timeout)

        remaining = deadline - self._clock()
        if remaining <= 0:
            raise InvocationTimeoutError(
                f"Command timed out after {int(timeout)}s",
                agent_id=agent.agent_id,
                mode=agent.invoke_mode.value,
            )
        result = self.runner.run(
            ProcessRunRequest(
                argv=[
                    *self.settings.ssh_command,
                    target,
                    self.remote_script(agent, prompt_path, reset=reset),
                ],
                timeout_seconds=remaining,
            ),
        )
        _raise_for_result(result, agent=agent, timeout_seconds=timeout)
        return extractor_for(agent.provider).extract(result.stdout)


def _require_remote_fields(agent: AgentDescriptor) -> None:
    missing = [
        name
        for name, value in (
            ("remote_host", agent.remote_host),
            ("remote_user", agent.remote_user),
            ("remote_project_root", agent.remote_project_root),
        )
        if not value
    ]
    if missing:
        raise AgentConfigurationError(
            agent.agent_id,
            f"Remote agent @{agent.agent_id} is missing: {', '.join(missing)}",
        )


def _raise_for_result(
    result: ProcessRunResult,
    *,
    agent: AgentDescriptor,
    timeout_seconds: float,
) -> None:
    mode = agent.invoke_mode.value
    if result.timed_out:
        raise InvocationTimeoutError(
            f"Command timed out after {int(timeout_seconds)}s",
            agent_id=agent.agent_id,
            mode=mode,
        )
    if result.exit_code == 0:
        return
    detail = result.stderr.strip() or f"Command exited with code {result.exit_code}"
    classification = classify_message(detail)
    logger.warning(
        "@%s (%s) exited with code %d [%s]: %s",
        agent.agent_id,
        mode,
        result.exit_code,
        classification.matched_rule,
        sanitize_preview(detail),
    )
    raise AgentProcessError(
        detail,
        exit_code=result.exit_code,
        stderr=result.stderr,
        agent_id=agent.agent_id,
        mode=mode,
        failure_class=(
            classification.failure_class if classification.transient else FailureClass.PROCESS
        ),
    )
