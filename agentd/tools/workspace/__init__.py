"""
Workspace tools package: the built-in tool provider.

Each submodule exports a TOOL constant. load_workspace_tools() imports them
and returns the name -> Tool map registered under WORKSPACE_PROVIDER_ID.
"""

from __future__ import annotations

import importlib
import logging

from ..base import Tool
from .context import get_workspace_root, reset_workspace_root, set_workspace_root

logger = logging.getLogger("agentd.tools.workspace")

WORKSPACE_PROVIDER_ID = "workspace"

WORKSPACE_TOOLS = (
    "read_file",
    "write_file",
    "edit_file",
    "list_directory",
    "search_code",
    "run_command",
)


def load_workspace_tools() -> dict[str, Tool]:
    """Import every workspace tool module and collect its TOOL."""
    tools: dict[str, Tool] = {}
    for name in WORKSPACE_TOOLS:
        module = importlib.import_module(f"{__name__}.{name}")
        tool = getattr(module, "TOOL", None)
        if isinstance(tool, Tool):
            tools[tool.name] = tool
        else:
            logger.error(f"Tool {name} at {module.__name__}.TOOL is not a Tool instance")
    return tools


__all__ = [
    "WORKSPACE_PROVIDER_ID",
    "WORKSPACE_TOOLS",
    "load_workspace_tools",
    "get_workspace_root",
    "set_workspace_root",
    "reset_workspace_root",
]
