"""Context capture agent: snapshots the local environment for a command."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

CONVERSATION_TAIL_CHARS = 500

DEPENDENCIES = ["platform", "os"]


class ContextCaptureAgent:
    """Native agent recording when, where and in what conversation a command ran.

    The ``platform`` and ``os`` modules arrive through its declared
    dependencies rather than imports.
    """

    async def execute(self, params: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        platform = context.get("platform")
        os_module = context.get("os")

        snapshot: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "platform": platform.platform() if platform else None,
            "working_directory": os_module.getcwd() if os_module else None,
        }

        conversation = params.get("conversation_context") or context.get("conversation_context")
        if conversation:
            snapshot["conversation_tail"] = conversation[-CONVERSATION_TAIL_CHARS:]
        return snapshot
