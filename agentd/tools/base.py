"""
Base types for the tool system.

Each built-in tool is a self-contained module exporting a `TOOL` object that
bundles the schema (for the LLM) with the implementation (for execution).
Tools contributed by external providers use the same types, built at
connection time instead of import time.

This architecture enables:
- Describable view: ToolSpec only, safe to hand to the LLM or a client
- Executable view: Tool with an optional handler
- Explicit outcomes: handlers return ToolResult with a declared Effect
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Union


# --- Side Effects ---


@dataclass(frozen=True)
class FileCreated:
    """A file that did not exist before the call now exists."""

    path: str


@dataclass(frozen=True)
class FileModified:
    """An existing file had its content changed."""

    path: str


@dataclass(frozen=True)
class CommandRun:
    """An arbitrary command was executed."""

    command: str


Effect = Union[FileCreated, FileModified, CommandRun]


class ToolCategory(Enum):
    """Side-effect class a tool belongs to; drives the approval gate."""

    READ_ONLY = "read_only"
    FILE_WRITE = "file_write"
    FILE_MODIFY = "file_modify"
    COMMAND = "command"


# --- Results ---


@dataclass(frozen=True)
class ToolResult:
    """
    Outcome of a tool execution.

    `success=False` always carries an `error`; `data` is only meaningful on
    success. `effect` is declared by the handler, never inferred.
    """

    success: bool
    data: Any = None
    error: str | None = None
    effect: Effect | None = None

    @classmethod
    def ok(cls, data: Any = None, effect: Effect | None = None) -> ToolResult:
        return cls(success=True, data=data, effect=effect)

    @classmethod
    def fail(cls, error: str) -> ToolResult:
        return cls(success=False, error=error or "Tool execution failed")

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire shape `{success, data?, error?}`."""
        result: dict[str, Any] = {"success": self.success}
        if self.success:
            if self.data is not None:
                result["data"] = self.data
        else:
            result["error"] = self.error
        return result


# Type alias for tool functions (sync or async)
ToolFunction = Callable[..., Any]


# --- Tool Definitions ---


@dataclass(frozen=True)
class ToolSpec:
    """
    Immutable tool specification (schema only).

    This is what gets sent to the LLM for function calling.
    """

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_schema(self) -> dict[str, Any]:
        """Convert to JSON Schema format for LLM prompt injection."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


@dataclass(frozen=True)
class Tool:
    """
    Complete tool definition: schema + implementation.

    `execute` is None for describable-only tools (e.g. a remote declaration
    whose handler is not available in this process).
    """

    spec: ToolSpec
    execute: ToolFunction | None = None
    category: ToolCategory = ToolCategory.READ_ONLY

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def description(self) -> str:
        return self.spec.description

    @property
    def parameters(self) -> dict[str, Any]:
        return self.spec.parameters

    @property
    def has_handler(self) -> bool:
        return callable(self.execute)

    def to_schema(self) -> dict[str, Any]:
        return self.spec.to_schema()


def tool(
    name: str,
    description: str,
    parameters: dict[str, Any],
    category: ToolCategory = ToolCategory.READ_ONLY,
) -> Callable[[ToolFunction], Tool]:
    """
    Decorator to create a Tool from a function.

    Usage:
        @tool(
            name="read_file",
            description="Read a file from the workspace",
            parameters={...},
        )
        def read_file(path: str) -> ToolResult:
            return ToolResult.ok({"content": "..."})

        TOOL = read_file
    """

    def decorator(fn: ToolFunction) -> Tool:
        spec = ToolSpec(name=name, description=description, parameters=parameters)
        return Tool(spec=spec, execute=fn, category=category)

    return decorator
