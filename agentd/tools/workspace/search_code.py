"""
Search code tool.

Plain substring search over source files in the workspace.
"""

import logging
import re
from pathlib import Path
from typing import Any

from ..base import ToolResult, tool
from .context import display_path, is_skipped_dir, resolve_path

logger = logging.getLogger("agentd.tools.workspace")

CODE_EXTENSIONS = frozenset({
    ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".json", ".css", ".scss",
    ".html", ".md", ".yaml", ".yml", ".toml", ".py", ".sh",
})


@tool(
    name="search_code",
    description="Search for a text pattern across files in the project. Use this to find where functions, variables, imports or patterns are used. Searches common code file types.",
    parameters={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The text to search for (exact substring)",
            },
            "path": {
                "type": "string",
                "description": "Directory to search in (defaults to '/' for the whole project)",
            },
            "max_results": {
                "type": "integer",
                "description": "Maximum number of matches to return (default 50)",
            },
            "include_pattern": {
                "type": "string",
                "description": "Regex; only file paths matching it are searched",
            },
            "exclude_pattern": {
                "type": "string",
                "description": "Regex; file paths matching it are skipped",
            },
        },
        "required": ["query"],
    },
)
def search_code(
    query: str,
    path: str = "/",
    max_results: int = 50,
    include_pattern: str | None = None,
    exclude_pattern: str | None = None,
) -> ToolResult:
    """Walk the tree and collect matching lines."""
    if not query:
        return ToolResult.fail("Failed to search code: query must not be empty")

    try:
        root = resolve_path(path, must_exist=True)
        include = re.compile(include_pattern) if include_pattern else None
        exclude = re.compile(exclude_pattern) if exclude_pattern else None
    except (OSError, ValueError, re.error) as e:
        return ToolResult.fail(f"Failed to search code: {e}")

    results: list[dict[str, Any]] = []

    def search_file(file_path: Path) -> None:
        try:
            lines = file_path.read_text(encoding="utf-8").split("\n")
        except (OSError, UnicodeDecodeError):
            return
        shown = display_path(file_path)
        for number, line in enumerate(lines, start=1):
            if len(results) >= max_results:
                return
            start = line.find(query)
            if start >= 0:
                results.append({
                    "file": shown,
                    "line": number,
                    "content": line.strip(),
                    "match_start": start,
                    "match_end": start + len(query),
                })

    def walk(directory: Path) -> None:
        for item in sorted(directory.iterdir(), key=lambda p: p.name):
            if len(results) >= max_results:
                return
            shown = display_path(item)
            if exclude and exclude.search(shown):
                continue
            if item.is_dir():
                if not is_skipped_dir(item.name):
                    walk(item)
            elif item.suffix in CODE_EXTENSIONS:
                if include and not include.search(shown):
                    continue
                search_file(item)

    try:
        if root.is_file():
            search_file(root)
        else:
            walk(root)
    except OSError as e:
        logger.error(f"Failed to search code for: {query}: {e}")
        return ToolResult.fail(f"Failed to search code: {e}")

    logger.debug(f"Search completed for: {query} ({len(results)} matches)")
    return ToolResult.ok({
        "query": query,
        "results": results,
        "match_count": len(results),
        "truncated": len(results) >= max_results,
    })


TOOL = search_code
