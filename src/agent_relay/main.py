"""CLI entrypoint for agent-relay."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from agent_relay import __version__
from agent_relay.orchestrator.controllers import (
    EnqueueCommand,
    EventsPruneCommand,
    HeartbeatCommand,
    InvokeCommand,
    ListCommand,
    OrchestratorCliController,
    ProcessorCommand,
    ResetCommand,
    ResponsesCommand,
)
from agent_relay.orchestrator.errors import ConfigurationError

click.rich_click.USE_MARKDOWN = True
ORCHESTRATOR_CONTROLLER = OrchestratorCliController()

C = TypeVar("C")
R = TypeVar("R")

_home_option = click.option(
    "--home",
    "home_dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Relay home with settings.json, queue/ and events/. Defaults to AGENT_RELAY_HOME.",
)


@click.group()
@click.version_option(version=__version__, prog_name="agent-relay")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Logging verbosity.",
)
def agent_relay(log_level: str) -> None:
    """Relay queued chat messages to CLI agents and agent teams."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@agent_relay.command("processor")
@_home_option
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Process what is queued now and exit, or poll until interrupted.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="In loop mode, exit after this many consecutive empty polls.",
)
@click.option(
    "--with-heartbeat/--without-heartbeat",
    default=None,
    help="Run the heartbeat scheduler on a background thread. "
    "Defaults to AGENT_RELAY_EMBED_HEARTBEAT.",
)
def processor(
    home_dir: Path | None,
    once: bool,
    max_idle_polls: int | None,
    with_heartbeat: bool | None,
) -> None:
    """Run the queue processor."""

    _emit_lines(
        _guarded(
            ORCHESTRATOR_CONTROLLER.run_processor,
            ProcessorCommand(
                home_dir=home_dir,
                once=once,
                max_idle_polls=max_idle_polls,
                with_heartbeat=with_heartbeat,
            ),
        ),
    )


@agent_relay.command("heartbeat")
@_home_option
@click.option("--once", is_flag=True, default=False, help="Run a single tick and exit.")
def heartbeat(home_dir: Path | None, once: bool) -> None:
    """Run the heartbeat scheduler."""

    _emit_lines(
        _guarded(
            ORCHESTRATOR_CONTROLLER.run_heartbeat,
            HeartbeatCommand(home_dir=home_dir, once=once),
        ),
    )


@agent_relay.command("enqueue")
@_home_option
@click.option("--message", "-m", required=True, help="Message text.")
@click.option("--channel", default="cli", show_default=True, help="Originating channel.")
@click.option("--sender", default="cli", show_default=True, help="Sender display name.")
@click.option("--agent", default=None, help="Explicit target agent or team id.")
@click.option("--team", default=None, help="Explicit target team id.")
@click.option("--message-id", default=None, help="Message id (generated when omitted).")
def enqueue(  # noqa: PLR0913
    home_dir: Path | None,
    message: str,
    channel: str,
    sender: str,
    agent: str | None,
    team: str | None,
    message_id: str | None,
) -> None:
    """Queue one work item for the processor."""

    _emit_lines(
        _guarded(
            ORCHESTRATOR_CONTROLLER.enqueue,
            EnqueueCommand(
                home_dir=home_dir,
                message=message,
                channel=channel,
                sender=sender,
                agent=agent,
                team=team,
                message_id=message_id,
            ),
        ),
    )


@agent_relay.command("responses")
@_home_option
@click.option("--message-id", default=None, help="Only responses to this message id.")
@click.option("--channel", default=None, help="Only responses for this channel.")
@click.option("--keep", is_flag=True, default=False, help="Print without deleting.")
def responses(
    home_dir: Path | None,
    message_id: str | None,
    channel: str | None,
    keep: bool,
) -> None:
    """Print (and by default consume) outgoing responses."""

    _emit_lines(
        _guarded(
            ORCHESTRATOR_CONTROLLER.responses,
            ResponsesCommand(
                home_dir=home_dir,
                message_id=message_id,
                channel=channel,
                keep=keep,
            ),
        ),
    )


@agent_relay.command("agents")
@_home_option
def agents(home_dir: Path | None) -> None:
    """List configured agents."""

    _emit_lines(_guarded(ORCHESTRATOR_CONTROLLER.agents, ListCommand(home_dir=home_dir)))


@agent_relay.command("teams")
@_home_option
def teams(home_dir: Path | None) -> None:
    """List configured teams."""

    _emit_lines(_guarded(ORCHESTRATOR_CONTROLLER.teams, ListCommand(home_dir=home_dir)))


@agent_relay.command("reset")
@_home_option
@click.option("--agent", default=None, help="Reset only this agent (default: next invoked agent).")
def reset(home_dir: Path | None, agent: str | None) -> None:
    """Start a fresh conversation on the next invocation."""

    _emit_lines(
        _guarded(ORCHESTRATOR_CONTROLLER.reset, ResetCommand(home_dir=home_dir, agent=agent)),
    )


@agent_relay.command("invoke")
@_home_option
@click.option("--agent", required=True, help="Agent id.")
@click.option("--message", "-m", required=True, help="Prompt text.")
@click.option("--reset", "reset_conversation", is_flag=True, default=False, help="Start fresh.")
def invoke(home_dir: Path | None, agent: str, message: str, reset_conversation: bool) -> None:
    """Invoke one agent directly, bypassing the queue."""

    result = _guarded(
        ORCHESTRATOR_CONTROLLER.invoke,
        InvokeCommand(home_dir=home_dir, agent=agent, message=message, reset=reset_conversation),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Agent invocation failed.")


@agent_relay.command("events-prune")
@_home_option
@click.option(
    "--max-age-hours",
    type=click.FloatRange(min=0),
    default=24.0,
    show_default=True,
    help="Delete event files older than this.",
)
def events_prune(home_dir: Path | None, max_age_hours: float) -> None:
    """Delete stale event files."""

    _emit_lines(
        _guarded(
            ORCHESTRATOR_CONTROLLER.prune_events,
            EventsPruneCommand(home_dir=home_dir, max_age_hours=max_age_hours),
        ),
    )


def _guarded(handler: Callable[[C], R], command: C) -> R:
    try:
        return handler(command)
    except (ConfigurationError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_relay()
