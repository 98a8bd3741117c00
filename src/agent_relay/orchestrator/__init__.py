"""Queue orchestrator for file-based CLI agent execution.

Why not Celery / Dramatiq / RQ?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Producers here are chat clients, cron shell scripts and health checks that
already speak "drop a JSON file in a directory".  The hard parts are not
queuing but the boundary with external CLI agents (claude, codex):

- Per-agent invocation contract: local subprocess or remote ``ssh`` run,
  conversation continue vs. reset, provider-specific output parsing.
- Team chains that thread one agent's output into the next agent's input
  while emitting hand-off events for dashboards.
- Heartbeats that inject synthetic work on a timer through the same path.

A broker would add an operational dependency to a single-host tool while
still requiring all of the above as custom task logic.  The directory queue
(claim by rename, atomic temp-file writes) is the right trade-off here, and
``WorkItemStore`` keeps the ``enqueue / poll_new / claim / complete`` seam
in one place should a broker ever be needed.
"""
