"""
Edit file tool.

Replaces an exact snippet inside an existing file. Never creates files.
"""

import logging

from ..base import FileModified, ToolCategory, ToolResult, tool
from .context import display_path, resolve_path

logger = logging.getLogger("agentd.tools.workspace")


@tool(
    name="edit_file",
    description="Replace an exact piece of text in an existing file. old_text must match the file exactly (including whitespace) and be unique unless replace_all is true. Prefer this over write_file for small changes to large files.",
    parameters={
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path of the file, relative to the project root",
            },
            "old_text": {
                "type": "string",
                "description": "Exact text to replace",
            },
            "new_text": {
                "type": "string",
                "description": "Replacement text",
            },
            "replace_all": {
                "type": "boolean",
                "description": "Replace every occurrence instead of requiring a unique match (default false)",
            },
        },
        "required": ["path", "old_text", "new_text"],
    },
    category=ToolCategory.FILE_MODIFY,
)
def edit_file(path: str, old_text: str, new_text: str, replace_all: bool = False) -> ToolResult:
    """Search-and-replace inside one file."""
    if not old_text:
        return ToolResult.fail("old_text must not be empty")

    try:
        target = resolve_path(path, must_exist=True)
        content = target.read_text(encoding="utf-8")
    except (OSError, ValueError, UnicodeDecodeError) as e:
        return ToolResult.fail(f"Failed to edit file '{path}': {e}")

    count = content.count(old_text)
    if count == 0:
        return ToolResult.fail(f"Failed to edit file '{path}': old_text not found")
    if count > 1 and not replace_all:
        return ToolResult.fail(
            f"Failed to edit file '{path}': old_text matches {count} times, "
            "make it unique or set replace_all"
        )

    updated = content.replace(old_text, new_text) if replace_all else content.replace(old_text, new_text, 1)
    try:
        target.write_text(updated, encoding="utf-8")
    except OSError as e:
        return ToolResult.fail(f"Failed to edit file '{path}': {e}")

    shown = display_path(target)
    replacements = count if replace_all else 1
    logger.info(f"Edited file: {shown} ({replacements} replacement(s))")
    return ToolResult.ok(
        {"path": shown, "replacements": replacements, "modified": True},
        effect=FileModified(shown),
    )


TOOL = edit_file
