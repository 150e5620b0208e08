"""
Tool registry: merges tools from every connected provider.

Architecture:
- A provider (the built-in workspace set, or an external MCP server)
  contributes a name -> Tool map under a provider id
- Every schema is sanitized on the way in
- Names are global: the most recently registered provider wins a collision
  and the override is logged; removing the winner does not restore the
  previous owner
- Two views: executable (Tool, handler included) and describable (ToolSpec)
- Registration never raises; unreachable providers are kept as UNAVAILABLE
  bindings with a reason and no tools
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from .base import Tool, ToolCategory, ToolResult, ToolSpec
from .schema import sanitize

logger = logging.getLogger("agentd.registry")


class ProviderStatus(Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


@dataclass
class ProviderBinding:
    """A provider as seen by the registry."""

    provider_id: str
    status: ProviderStatus
    tools: dict[str, Tool] = field(default_factory=dict)
    error: str | None = None
    connection: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status.value,
            "tools": {
                name: {"description": t.description, "parameters": t.parameters}
                for name, t in self.tools.items()
            },
        }
        if self.error is not None:
            data["error"] = self.error
        return data


class ToolTimeoutError(Exception):
    """A handler did not finish within the caller-supplied timeout."""


class ToolRegistry:
    """
    Central registry for tool definitions from all providers.

    Provides:
    - Provider registration / unregistration
    - Executable and describable lookups
    - Async execution with timeout, returning ToolResult

    Mutations hold the lock for their whole duration; readers that
    enumerate take the same lock and return copies.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}
        self._specs: dict[str, ToolSpec] = {}
        self._owners: dict[str, str] = {}
        self._providers: dict[str, ProviderBinding] = {}
        self._lock = threading.RLock()

    # --- Registration ---

    def register_provider(
        self,
        provider_id: str,
        tools: Mapping[str, Any],
        connection: Any = None,
    ) -> None:
        """Register (or re-register) a provider and all of its tools."""
        with self._lock:
            self._drop_owned(provider_id)

            accepted: dict[str, Tool] = {}
            for name, raw in tools.items():
                try:
                    tool = _coerce_tool(name, raw)
                except (TypeError, ValueError) as e:
                    logger.error(f"Skipping tool {name!r} from provider {provider_id!r}: {e}")
                    continue

                tool = _sanitized(tool, provider_id)

                previous_owner = self._owners.get(name)
                if previous_owner is not None and previous_owner != provider_id:
                    logger.warning(
                        f'Tool conflict: "{name}" from "{provider_id}" overrides tool from "{previous_owner}"'
                    )
                    previous = self._providers.get(previous_owner)
                    if previous is not None:
                        previous.tools.pop(name, None)

                self._tools[name] = tool
                self._specs[name] = tool.spec
                self._owners[name] = provider_id
                accepted[name] = tool

            self._providers[provider_id] = ProviderBinding(
                provider_id=provider_id,
                status=ProviderStatus.AVAILABLE,
                tools=accepted,
                connection=connection,
            )
            logger.debug(f"Registered provider {provider_id!r} with {len(accepted)} tool(s)")

    def mark_unavailable(
        self,
        provider_id: str,
        reason: str,
        connection: Any = None,
    ) -> None:
        """Record a provider whose tools could not be retrieved."""
        with self._lock:
            self._drop_owned(provider_id)
            self._providers[provider_id] = ProviderBinding(
                provider_id=provider_id,
                status=ProviderStatus.UNAVAILABLE,
                error=reason,
                connection=connection,
            )
            logger.warning(f"Provider {provider_id!r} unavailable: {reason}")

    def unregister_provider(self, provider_id: str) -> None:
        """Remove a provider and the tools it currently owns."""
        with self._lock:
            removed = self._drop_owned(provider_id)
            self._providers.pop(provider_id, None)
            logger.debug(f"Unregistered provider {provider_id!r} ({removed} tool(s) removed)")

    def clear(self) -> None:
        """Drop every provider and tool."""
        with self._lock:
            self._tools.clear()
            self._specs.clear()
            self._owners.clear()
            self._providers.clear()

    def _drop_owned(self, provider_id: str) -> int:
        owned = [name for name, owner in self._owners.items() if owner == provider_id]
        for name in owned:
            del self._tools[name]
            del self._specs[name]
            del self._owners[name]
        return len(owned)

    # --- Lookup ---

    def get(self, name: str) -> Tool | None:
        """Get the executable tool by name."""
        with self._lock:
            return self._tools.get(name)

    def get_spec(self, name: str) -> ToolSpec | None:
        """Get a tool's describable spec by name."""
        with self._lock:
            return self._specs.get(name)

    def get_describable(self) -> dict[str, ToolSpec]:
        """Snapshot of every tool without its handler, for the LLM."""
        with self._lock:
            return dict(self._specs)

    def is_known(self, name: str) -> bool:
        with self._lock:
            return name in self._tools

    def owner_of(self, name: str) -> str | None:
        """Provider id that currently owns a tool name."""
        with self._lock:
            return self._owners.get(name)

    def providers(self) -> dict[str, ProviderBinding]:
        """Snapshot of provider bindings, including unavailable ones."""
        with self._lock:
            return {
                pid: ProviderBinding(
                    provider_id=b.provider_id,
                    status=b.status,
                    tools=dict(b.tools),
                    error=b.error,
                    connection=b.connection,
                )
                for pid, b in self._providers.items()
            }

    @property
    def available_tools(self) -> list[str]:
        """List all registered tool names."""
        with self._lock:
            return list(self._tools.keys())

    # --- Execution ---

    async def invoke(
        self,
        tool: Tool,
        arguments: dict[str, Any],
        timeout: float | None = None,
    ) -> Any:
        """
        Call a tool's handler and return whatever it returns.

        Async handlers are awaited directly; sync handlers run in a thread
        pool to avoid blocking the event loop. Raises on handler failure or
        ToolTimeoutError when `timeout` (seconds) elapses. A timed-out sync
        handler keeps running in its worker thread.
        """
        if tool.execute is None:
            raise TypeError(f"Tool {tool.name} has no execute function")

        if inspect.iscoroutinefunction(tool.execute):
            call = tool.execute(**arguments)
        else:
            call = asyncio.to_thread(tool.execute, **arguments)

        try:
            result = await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ToolTimeoutError(f"Tool {tool.name} timed out after {timeout}s") from e

        # Sync wrappers around coroutines
        if inspect.iscoroutine(result):
            result = await asyncio.wait_for(result, timeout=timeout)
        return result

    async def execute_async(
        self,
        name: str,
        arguments: dict[str, Any],
        timeout: float | None = None,
    ) -> ToolResult:
        """
        Execute a tool by name with given arguments.

        Never raises: unknown tools, describable-only tools, timeouts and
        handler exceptions all come back as failed ToolResults.
        """
        tool = self.get(name)
        if tool is None:
            return ToolResult.fail(f"Unknown tool: {name}")
        if not tool.has_handler:
            logger.warning(f"tool {name!r} has no execute function")
            return ToolResult.fail(f"Tool {name} has no execute function")

        try:
            result = await self.invoke(tool, arguments, timeout=timeout)
        except ToolTimeoutError as e:
            logger.error(str(e))
            return ToolResult.fail(str(e))
        except Exception as e:
            logger.exception(f"Tool {name} execution failed")
            return ToolResult.fail(f"Tool execution failed: {e}")

        return as_tool_result(result)


# --- Coercion ---


def as_tool_result(value: Any) -> ToolResult:
    """Wrap a raw handler return value into a ToolResult."""
    if isinstance(value, ToolResult):
        return value
    if isinstance(value, dict) and isinstance(value.get("success"), bool):
        if value["success"]:
            return ToolResult.ok(value.get("data"))
        return ToolResult.fail(str(value.get("error") or "Tool execution failed"))
    return ToolResult.ok(value)


def _coerce_tool(name: str, raw: Any) -> Tool:
    """Accept Tool, ToolSpec or a provider-contract dict."""
    if isinstance(raw, Tool):
        if raw.name != name:
            return Tool(
                spec=ToolSpec(name, raw.description, raw.parameters),
                execute=raw.execute,
                category=raw.category,
            )
        return raw
    if isinstance(raw, ToolSpec):
        return Tool(spec=ToolSpec(name, raw.description, raw.parameters))
    if isinstance(raw, Mapping):
        parameters = raw.get("parameters", raw.get("schema", raw.get("inputSchema")))
        if parameters is None:
            parameters = {"type": "object", "properties": {}}
        if not isinstance(parameters, dict):
            raise TypeError("parameters must be a JSON Schema object")
        handler = raw.get("handler", raw.get("execute"))
        if handler is not None and not callable(handler):
            raise TypeError("handler must be callable")
        category = raw.get("category", ToolCategory.READ_ONLY)
        return Tool(
            spec=ToolSpec(
                name=name,
                description=str(raw.get("description") or "No description available"),
                parameters=parameters,
            ),
            execute=handler,
            category=ToolCategory(category),
        )
    raise TypeError(f"unsupported tool definition type {type(raw).__name__}")


def _sanitized(tool: Tool, provider_id: str) -> Tool:
    parameters = sanitize(tool.parameters)
    if parameters == tool.parameters:
        return tool

    logger.info(
        f'Sanitized schema for tool "{tool.name}" from provider "{provider_id}" '
        f"(removed unsupported constructs for cross-provider compatibility)"
    )
    logger.debug(f"Original schema: {tool.parameters}")
    logger.debug(f"Sanitized schema: {parameters}")
    return Tool(
        spec=ToolSpec(tool.name, tool.description, parameters),
        execute=tool.execute,
        category=tool.category,
    )
