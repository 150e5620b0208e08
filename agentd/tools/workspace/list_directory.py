"""
List directory tool.

Lists entries of a workspace directory, optionally recursing a bounded
number of levels. Dependency and build directories are never descended.
"""

import logging
from pathlib import Path
from typing import Any

from ..base import ToolResult, tool
from .context import display_path, is_skipped_dir, resolve_path

logger = logging.getLogger("agentd.tools.workspace")

MAX_ENTRIES = 1000


@tool(
    name="list_directory",
    description="List files and subdirectories in a directory. Use this to explore the project structure. Supports recursive listing; node_modules, .git, build output and hidden directories are skipped.",
    parameters={
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Directory to list, relative to the project root (defaults to '/')",
            },
            "recursive": {
                "type": "boolean",
                "description": "Whether to list subdirectories recursively (default false)",
            },
            "max_depth": {
                "type": "integer",
                "description": "Maximum recursion depth when recursive (default 3)",
            },
        },
        "required": [],
    },
)
def list_directory(path: str = "/", recursive: bool = False, max_depth: int = 3) -> ToolResult:
    """List a directory."""
    try:
        root = resolve_path(path, must_exist=True)
        if not root.is_dir():
            return ToolResult.fail(f"Failed to list directory '{path}': not a directory")
    except (OSError, ValueError) as e:
        return ToolResult.fail(f"Failed to list directory '{path}': {e}")

    entries: list[dict[str, Any]] = []
    truncated = False

    def traverse(directory: Path, depth: int) -> None:
        nonlocal truncated
        for item in sorted(directory.iterdir(), key=lambda p: p.name):
            if len(entries) >= MAX_ENTRIES:
                truncated = True
                return
            is_dir = item.is_dir()
            entry: dict[str, Any] = {"name": display_path(item), "is_directory": is_dir}
            if not is_dir:
                entry["size"] = item.stat().st_size
            entries.append(entry)

            if recursive and is_dir and depth < max_depth and not is_skipped_dir(item.name):
                traverse(item, depth + 1)

    try:
        traverse(root, 0)
    except OSError as e:
        logger.error(f"Failed to list directory: {path}: {e}")
        return ToolResult.fail(f"Failed to list directory '{path}': {e}")

    logger.debug(f"Listed directory: {path} ({len(entries)} entries, recursive={recursive})")
    return ToolResult.ok({
        "path": display_path(root),
        "entries": entries,
        "total_count": len(entries),
        "truncated": truncated,
    })


TOOL = list_directory
