"""
Invocation bridge: resolves tool calls a client has approved or rejected.

The client answers each pending tool call in the transcript by writing a
sentinel string into the call's `result`. Before the transcript goes back to
the LLM, the bridge swaps those sentinels for real outcomes:

    APPROVE -> handler output (or TOOL_NO_EXECUTE_FUNCTION / TOOL_EXECUTION_ERROR)
    REJECT  -> TOOL_EXECUTION_DENIED
    other   -> left untouched

Every resolved call is also pushed to the client as a `tool_result` event.
Approved calls to the built-in workspace tools run through the orchestrator,
so they land in the session's records; other providers' tools are invoked
on the registry directly.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from .orchestrator import Orchestrator
from .tools import WORKSPACE_PROVIDER_ID, ToolRegistry, ToolResult

logger = logging.getLogger("agentd.bridge")


class ToolApproval(str, Enum):
    APPROVE = "Yes, approved."
    REJECT = "No, rejected."


TOOL_EXECUTION_DENIED = "Error: User denied access to tool execution"
TOOL_EXECUTION_ERROR = "Error: An error occurred while calling tool"
TOOL_NO_EXECUTE_FUNCTION = "Error: No execute function found on tool"

TOOL_INVOCATION_PART = "tool-invocation"

# Receives out-of-band events for the client stream
EventSink = Callable[[dict[str, Any]], Awaitable[None]]


class InvocationBridge:
    """Applies approval sentinels in a transcript using one registry."""

    def __init__(
        self,
        registry: ToolRegistry,
        timeout: float | None = None,
        orchestrator: Orchestrator | None = None,
    ) -> None:
        self._registry = registry
        self._timeout = timeout
        self._orchestrator = orchestrator

    def tool_call_annotation(self, tool_call: dict[str, Any]) -> dict[str, Any] | None:
        """
        Build the annotation event for a tool call the LLM just emitted.

        Returns None for tools this registry does not know.
        """
        name = tool_call.get("tool_name")
        spec = self._registry.get_spec(name) if isinstance(name, str) else None
        server_name = self._registry.owner_of(name) if spec is not None else None
        if spec is None or server_name is None:
            return None

        return {
            "type": "tool_call",
            "tool_call_id": tool_call.get("tool_call_id"),
            "server_name": server_name,
            "tool_name": name,
            "tool_description": spec.description or "No description available",
        }

    async def process_tool_call(self, tool_call: dict[str, Any], emit: EventSink) -> None:
        """Emit the annotation event for a known tool; unknown tools are ignored."""
        if not isinstance(tool_call, dict):
            return
        event = self.tool_call_annotation(tool_call)
        if event is not None:
            await _emit_safely(emit, event)

    async def process_tool_invocations(
        self,
        messages: list[dict[str, Any]],
        emit: EventSink,
    ) -> list[dict[str, Any]]:
        """
        Resolve sentinel results in the last message.

        Parts are resolved concurrently. Only the last message is replaced;
        earlier messages are returned as the same objects.
        """
        if not messages:
            return messages

        last = messages[-1]
        if not isinstance(last, dict):
            return messages
        parts = last.get("parts")
        if not parts or not isinstance(parts, list):
            return messages

        processed = await asyncio.gather(*(self._resolve_part(part, emit) for part in parts))
        return [*messages[:-1], {**last, "parts": list(processed)}]

    async def _resolve_part(self, part: Any, emit: EventSink) -> Any:
        try:
            return await self._process_part(part, emit)
        except Exception:
            logger.exception("failed to process tool invocation part")
            return part

    async def _process_part(self, part: Any, emit: EventSink) -> Any:
        if not isinstance(part, dict) or part.get("type") != TOOL_INVOCATION_PART:
            return part

        invocation = part.get("tool_invocation")
        if not isinstance(invocation, dict):
            return part
        name = invocation.get("tool_name")
        call_id = invocation.get("tool_call_id")

        if not isinstance(name, str) or not self._registry.is_known(name):
            return part
        if invocation.get("state") != "result":
            return part

        answer = invocation.get("result")
        if answer == ToolApproval.APPROVE.value:
            args = invocation.get("args")
            result = await self._execute(name, args if isinstance(args, dict) else {})
        elif answer == ToolApproval.REJECT.value:
            result = TOOL_EXECUTION_DENIED
        else:
            return part

        await _emit_safely(emit, {"type": "tool_result", "tool_call_id": call_id, "result": result})
        return {**part, "tool_invocation": {**invocation, "result": result}}

    async def _execute(self, name: str, args: dict[str, Any]) -> Any:
        tool = self._registry.get(name)
        if tool is None or not tool.has_handler:
            logger.warning(f'tool "{name}" has no execute function')
            return TOOL_NO_EXECUTE_FUNCTION

        if self._orchestrator is not None and self._registry.owner_of(name) == WORKSPACE_PROVIDER_ID:
            # The transcript answer is the human's approval
            logger.debug(f'running workspace tool "{name}" through the orchestrator')
            result = await self._orchestrator.execute_tool(name, args, approved=True)
            return result.to_dict()

        logger.debug(f'calling tool "{name}" with args: {args}')
        try:
            result = await self._registry.invoke(tool, args, timeout=self._timeout)
        except Exception as e:
            logger.error(f'error while calling tool "{name}": {e}')
            return TOOL_EXECUTION_ERROR

        logger.debug(f'tool "{name}" returned successfully')
        if isinstance(result, ToolResult):
            return result.to_dict()
        return result


async def _emit_safely(emit: EventSink, event: dict[str, Any]) -> None:
    try:
        await emit(event)
    except Exception:
        logger.exception(f"event sink failed for {event.get('type')} event")
