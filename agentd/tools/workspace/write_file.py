"""
Write file tool.

Creates or overwrites a file in the workspace, creating parent directories
as needed. Declares FileCreated or FileModified depending on whether the
file existed beforehand.
"""

import logging

from ..base import FileCreated, FileModified, ToolCategory, ToolResult, tool
from .context import display_path, resolve_path

logger = logging.getLogger("agentd.tools.workspace")


@tool(
    name="write_file",
    description="Write content to a file. Creates the file if it does not exist, overwrites it otherwise. Parent directories are created automatically. Always write the COMPLETE file content.",
    parameters={
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path of the file, relative to the project root",
            },
            "content": {
                "type": "string",
                "description": "Complete content to write",
            },
        },
        "required": ["path", "content"],
    },
    category=ToolCategory.FILE_WRITE,
)
def write_file(path: str, content: str) -> ToolResult:
    """Write a whole file."""
    try:
        target = resolve_path(path)
        existed = target.exists()
        if existed and target.is_dir():
            return ToolResult.fail(f"Failed to write file '{path}': path is a directory")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    except (OSError, ValueError) as e:
        logger.error(f"Failed to write file: {path}: {e}")
        return ToolResult.fail(f"Failed to write file '{path}': {e}")

    shown = display_path(target)
    logger.info(f"Wrote file: {shown} ({len(content)} bytes, created={not existed})")
    effect = FileModified(shown) if existed else FileCreated(shown)
    return ToolResult.ok(
        {"path": shown, "bytes_written": len(content), "created": not existed},
        effect=effect,
    )


TOOL = write_file
