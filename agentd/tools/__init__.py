"""
Tools package: tool types, schema sanitizer, registry, built-in tools.

Architecture:
- base: Tool / ToolSpec / ToolResult / Effect types and the @tool decorator
- schema: sanitize() for strict function-calling providers
- registry: ToolRegistry merging tools from every provider
- workspace: the built-in provider (one tool per module)

Public API:
- create_registry: registry pre-populated with the workspace provider
"""

from .base import (
    CommandRun,
    Effect,
    FileCreated,
    FileModified,
    Tool,
    ToolCategory,
    ToolFunction,
    ToolResult,
    ToolSpec,
    tool,
)
from .registry import ProviderBinding, ProviderStatus, ToolRegistry, ToolTimeoutError
from .schema import SchemaNode, sanitize
from .workspace import WORKSPACE_PROVIDER_ID, load_workspace_tools


def create_registry(include_workspace: bool = True) -> ToolRegistry:
    """Create a registry, optionally with the built-in workspace tools."""
    registry = ToolRegistry()
    if include_workspace:
        registry.register_provider(WORKSPACE_PROVIDER_ID, load_workspace_tools())
    return registry


__all__ = [
    "CommandRun",
    "Effect",
    "FileCreated",
    "FileModified",
    "Tool",
    "ToolCategory",
    "ToolFunction",
    "ToolResult",
    "ToolSpec",
    "tool",
    "ProviderBinding",
    "ProviderStatus",
    "ToolRegistry",
    "ToolTimeoutError",
    "SchemaNode",
    "sanitize",
    "WORKSPACE_PROVIDER_ID",
    "load_workspace_tools",
    "create_registry",
]
