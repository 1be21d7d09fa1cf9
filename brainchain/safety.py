"""
Hard deny-list veto on tool use.

Runs after tool approval and before the model call. Removal is silent to
the caller and visible only in logs and the audit trail; it never blocks
a request.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

logger = logging.getLogger(__name__)

# Destructive or irreversible operations
DEFAULT_DENY_LIST: frozenset[str] = frozenset(
    {
        # filesystem
        "deleteFile",
        "deleteDirectory",
        "modifyFile",
        # process execution
        "executeCommand",
        "runScript",
        "restartServer",
        "shutdownServer",
        # data
        "modifyDatabase",
        "dropTable",
        "deleteRecord",
        "truncateTable",
        # outbound messages
        "sendEmail",
        "sendSMS",
        "sendNotification",
        # release
        "deployCode",
        "releaseVersion",
        "rollbackVersion",
    }
)


class SafetyGuardrail:
    """Strips deny-listed tools from an approved set."""

    def __init__(self, extra_denied: Iterable[str] = ()):
        self.deny_list = DEFAULT_DENY_LIST | frozenset(extra_denied)

    def is_safe(self, tool_name: str) -> bool:
        return tool_name not in self.deny_list

    def filter_tools(self, tools: Iterable[str], trace_id: str = "") -> tuple[list[str], list[str]]:
        """
        Split ``tools`` into (kept, removed), preserving order.

        Every removed tool is logged at warning level with the trace id.
        """
        kept: list[str] = []
        removed: list[str] = []
        for tool in tools:
            if self.is_safe(tool):
                kept.append(tool)
            else:
                removed.append(tool)
                logger.warning(f"[{trace_id}] Safety guardrail removed dangerous tool: {tool}")
        return kept, removed


__all__ = ["DEFAULT_DENY_LIST", "SafetyGuardrail"]
