"""File-queue orchestrator for CLI agents, teams, and heartbeats."""

__version__ = "0.1.0"
