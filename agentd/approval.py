"""
Approval gate: decides which tool calls need a human in the loop.

Only side-effecting categories (file writes/modifications, arbitrary
commands) can require approval; read-only tools never do. The decision is a
pure function of the tool's category, its arguments and the current
settings. Confirmation itself happens over an async channel supplied by the
host; without one, anything that needs approval is denied.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from .config import AgentSettings
from .tools import ToolCategory


@dataclass(frozen=True)
class ApprovalRequest:
    """A pending confirmation, discarded once resolved."""

    tool_name: str
    params: dict[str, Any]
    reason: str
    category: ToolCategory = ToolCategory.READ_ONLY
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tool_name": self.tool_name,
            "params": self.params,
            "reason": self.reason,
            "category": self.category.value,
            "timestamp": self.timestamp,
        }


# Host-supplied confirmation channel; resolves to True when approved
ApprovalCallback = Callable[[ApprovalRequest], Awaitable[bool]]


def needs_approval(
    tool_name: str,
    params: dict[str, Any],
    settings: AgentSettings,
    category: ToolCategory = ToolCategory.READ_ONLY,
) -> bool:
    """Return True if calling `tool_name` with `params` needs confirmation."""
    if category is ToolCategory.COMMAND:
        return not settings.auto_approve_commands
    if category is ToolCategory.FILE_WRITE:
        return bool(params.get("path")) and not settings.auto_approve_file_creation
    if category is ToolCategory.FILE_MODIFY:
        return not settings.auto_approve_file_modification
    return False


def approval_reason(tool_name: str, category: ToolCategory) -> str:
    if category is ToolCategory.COMMAND:
        return f"Tool {tool_name} runs a command and requires approval"
    if category in (ToolCategory.FILE_WRITE, ToolCategory.FILE_MODIFY):
        return f"Tool {tool_name} changes files and requires approval"
    return f"Tool {tool_name} requires approval"
