"""
Read file tool.

Reads a text file from the workspace, optionally a line range of it.
"""

import logging

from ..base import ToolResult, tool
from .context import display_path, resolve_path

logger = logging.getLogger("agentd.tools.workspace")


@tool(
    name="read_file",
    description="Read the contents of a file from the project. Use this to examine existing code, configuration files, or any text file. Supports reading specific line ranges for large files.",
    parameters={
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path of the file, relative to the project root (e.g. '/src/App.tsx')",
            },
            "start_line": {
                "type": "integer",
                "description": "First line to read, 1-indexed (optional)",
            },
            "end_line": {
                "type": "integer",
                "description": "Last line to read, inclusive (optional)",
            },
        },
        "required": ["path"],
    },
)
def read_file(path: str, start_line: int | None = None, end_line: int | None = None) -> ToolResult:
    """Read a file, optionally sliced to a line range."""
    try:
        target = resolve_path(path, must_exist=True)
        content = target.read_text(encoding="utf-8")
    except (OSError, ValueError, UnicodeDecodeError) as e:
        logger.error(f"Failed to read file: {path}: {e}")
        return ToolResult.fail(f"Failed to read file '{path}': {e}")

    lines = content.split("\n")
    truncated = False
    if start_line is not None or end_line is not None:
        start = max((start_line or 1) - 1, 0)
        end = end_line if end_line is not None else len(lines)
        content = "\n".join(lines[start:end])
        truncated = start > 0 or end < len(lines)

    logger.debug(f"Read file: {path} ({len(lines)} lines, truncated={truncated})")
    return ToolResult.ok({
        "content": content,
        "path": display_path(target),
        "line_count": len(lines),
        "truncated": truncated,
    })


TOOL = read_file
