"""Out-of-band conversation reset flags."""

from __future__ import annotations

import logging
from pathlib import Path

from agent_relay.orchestrator.contracts import write_text_atomic

logger = logging.getLogger(__name__)


class ResetSignal:
    """File flags checked and cleared right before an invocation.

    ``reset_flag`` applies to whichever agent is invoked next;
    ``reset_flags/<agent_id>`` applies to that agent only. Setting a flag
    never cancels an invocation that is already running.
    """

    def __init__(self, home_dir: Path) -> None:
        self.global_flag = home_dir / "reset_flag"
        self.agent_flags_dir = home_dir / "reset_flags"

    def request(self, agent_id: str | None = None) -> Path:
        path = self.global_flag if agent_id is None else self.agent_flags_dir / agent_id
        write_text_atomic(path, "reset")
        return path

    def consume(self, agent_id: str) -> bool:
        """Return True when a reset was pending for ``agent_id`` and clear it."""

        consumed = False
        for path in (self.agent_flags_dir / agent_id, self.global_flag):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            consumed = True
        if consumed:
            logger.info("Resetting conversation for agent: %s", agent_id)
        return consumed
