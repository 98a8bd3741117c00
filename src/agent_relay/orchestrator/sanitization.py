"""Log previews of prompts, responses and agent stderr with secrets masked."""

from __future__ import annotations

import re

PREVIEW_CHARS = 200

# Provider keys as the claude/codex CLIs print them (sk-..., sk-ant-..., sk-proj-...).
_PROVIDER_KEY = re.compile(r"\bsk-[A-Za-z0-9_\-]{8,}")
# Assignments echoed from agent env files, e.g. ANTHROPIC_API_KEY=... or DISCORD_WEBHOOK_URL=...
_ENV_ASSIGNMENT = re.compile(
    r"\b((?:[A-Z0-9]+_)*(?:API_KEY|TOKEN|SECRET|WEBHOOK_URL))\s*=\s*\S+",
)
_WEBHOOK_URL = re.compile(r"https?://\S+/api/webhooks/\S+")
_BEARER = re.compile(r"(?i)\bbearer\s+\S{8,}")


def sanitize_preview(text: str, *, max_chars: int = PREVIEW_CHARS) -> str:
    """One-line, masked, clamped rendering of ``text`` for log records."""

    preview = " ".join(text.split())
    preview = _ENV_ASSIGNMENT.sub(r"\1=[redacted]", preview)
    preview = _WEBHOOK_URL.sub("[webhook-url]", preview)
    preview = _PROVIDER_KEY.sub("[api-key]", preview)
    preview = _BEARER.sub("Bearer [redacted]", preview)
    if len(preview) > max_chars:
        return preview[:max_chars] + "..."
    return preview
