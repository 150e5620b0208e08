"""
Agent orchestrator: one bounded, approval-gated agent run at a time.

Architecture:
- ExecutionSession: all mutable state of the current run (no hidden fields)
- Orchestrator: state machine over ExecutionSession
    idle -> thinking -> executing -> (waiting_for_approval ->) thinking ...
         -> completed | error
  abort() returns to idle from any state
- Tool dispatch goes through the ToolRegistry; the approval gate decides
  whether a human must confirm first
- Side effects are taken from the Effect each handler declares

The orchestrator never raises out of execute_tool(). It does not check
can_continue() itself: callers gate every dispatch on can_continue() and
stop once increment_iteration() returns False.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from .approval import ApprovalCallback, ApprovalRequest, approval_reason, needs_approval
from .config import AgentSettings
from .tools import CommandRun, FileCreated, FileModified, ToolRegistry, ToolResult

logger = logging.getLogger("agentd.orchestrator")

ITERATION_WARNING_THRESHOLD = 5

NOT_APPROVED_ERROR = "Tool execution not approved by user"

ITERATION_WARNING_PROMPT = """
## Approaching Iteration Limit

You are nearing the maximum number of iterations ({max_iterations}). Please:

1. Summarize what has been accomplished so far
2. List any remaining tasks
3. Provide a clear status to the user
4. If more work is needed, explain what the next steps would be

Focus on leaving the project in a stable, working state.
"""


class AgentStatus(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    EXECUTING = "executing"
    WAITING_FOR_APPROVAL = "waiting_for_approval"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class ToolCallRecord:
    """Audit entry for one tool call. Never mutated after creation."""

    id: str
    name: str
    params: dict[str, Any]
    result: ToolResult
    timestamp_start: float
    duration_ms: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "params": self.params,
            "result": self.result.to_dict(),
            "timestamp_start": self.timestamp_start,
            "duration_ms": self.duration_ms,
        }


@dataclass
class ExecutionSession:
    """Mutable state of the current agent run."""

    status: AgentStatus = AgentStatus.IDLE
    iteration: int = 0
    max_iterations: int = AgentSettings().max_iterations
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    total_tool_calls: int = 0
    files_created: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    commands_executed: list[str] = field(default_factory=list)
    current_task: str | None = None
    error_message: str | None = None
    pending_approval: ApprovalRequest | None = None
    last_tool_call: ToolCallRecord | None = None
    session_start_time: float | None = None
    session_end_time: float | None = None
    approval_wait_ms: float = 0.0

    @property
    def is_executing(self) -> bool:
        return self.status is AgentStatus.EXECUTING

    @property
    def active_duration_ms(self) -> float | None:
        """Wall time of the run minus time spent waiting on approvals."""
        if self.session_start_time is None:
            return None
        end = self.session_end_time if self.session_end_time is not None else time.time()
        return max((end - self.session_start_time) * 1000 - self.approval_wait_ms, 0.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "is_executing": self.is_executing,
            "iteration": self.iteration,
            "max_iterations": self.max_iterations,
            "tool_calls": [r.to_dict() for r in self.tool_calls],
            "total_tool_calls": self.total_tool_calls,
            "files_created": list(self.files_created),
            "files_modified": list(self.files_modified),
            "commands_executed": list(self.commands_executed),
            "current_task": self.current_task,
            "error_message": self.error_message,
            "pending_approval": self.pending_approval.to_dict() if self.pending_approval else None,
            "session_start_time": self.session_start_time,
            "session_end_time": self.session_end_time,
            "approval_wait_ms": self.approval_wait_ms,
            "active_duration_ms": self.active_duration_ms,
        }


# --- Callbacks ---

StatusCallback = Callable[[AgentStatus], None]
ToolExecutedCallback = Callable[[ToolCallRecord], None]
IterationCallback = Callable[[int, ExecutionSession], None]


class Orchestrator:
    """
    Drives one ExecutionSession.

    Bookkeeping (records, counters, effect lists) is serialized with a lock,
    so a host may run several handlers of one turn concurrently. Status
    transitions are not meant for concurrent callers.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        settings: AgentSettings | None = None,
        *,
        on_status_change: StatusCallback | None = None,
        on_tool_executed: ToolExecutedCallback | None = None,
        on_iteration_complete: IterationCallback | None = None,
        on_approval_needed: ApprovalCallback | None = None,
        auto_approve_all: bool = False,
        tool_timeout: float | None = None,
    ) -> None:
        self._registry = registry
        self._settings = settings or AgentSettings()
        self._on_status_change = on_status_change
        self._on_tool_executed = on_tool_executed
        self._on_iteration_complete = on_iteration_complete
        self._on_approval_needed = on_approval_needed
        self._auto_approve_all = auto_approve_all
        self._tool_timeout = tool_timeout
        self._lock = threading.Lock()
        self._state = self._initial_state()
        logger.debug(f"Orchestrator initialized with settings: {self._settings}")

    def _initial_state(self) -> ExecutionSession:
        return ExecutionSession(max_iterations=self._settings.max_iterations)

    # --- Settings ---

    def get_settings(self) -> AgentSettings:
        return self._settings

    def update_settings(self, **changes: Any) -> AgentSettings:
        """Apply partial settings; the iteration budget follows immediately."""
        self._settings = self._settings.updated(**changes)
        self._state.max_iterations = self._settings.max_iterations
        logger.debug(f"Settings updated: {changes}")
        return self._settings

    def set_approval_callback(self, callback: ApprovalCallback | None) -> None:
        self._on_approval_needed = callback

    # --- State ---

    def get_state(self) -> ExecutionSession:
        """Deep snapshot; mutating it does not affect the orchestrator."""
        with self._lock:
            return copy.deepcopy(self._state)

    @property
    def status(self) -> AgentStatus:
        return self._state.status

    def _set_status(self, status: AgentStatus) -> None:
        self._state.status = status
        if self._on_status_change is not None:
            try:
                self._on_status_change(status)
            except Exception:
                logger.exception("on_status_change callback failed")

    # --- Lifecycle ---

    def start_session(self, task: str) -> None:
        """Discard the previous run's state and start thinking about `task`."""
        self._state = self._initial_state()
        self._state.current_task = task
        self._state.session_start_time = time.time()
        logger.info(f"Session started: {task}")
        self._set_status(AgentStatus.THINKING)

    def end_session(self) -> ExecutionSession:
        self._state.session_end_time = time.time()
        self._set_status(AgentStatus.COMPLETED)
        logger.info(f"Session ended: {self.get_session_summary()}")
        return self.get_state()

    def reset(self) -> None:
        self._state = self._initial_state()
        logger.debug("State reset")
        self._set_status(AgentStatus.IDLE)

    def abort(self) -> None:
        """
        Stop the run (user-initiated, not an error).

        In-flight handlers are not cancelled; their results are still
        recorded when they finish.
        """
        try:
            self._state.pending_approval = None
            logger.info("Execution aborted")
            self._set_status(AgentStatus.IDLE)
        except Exception:
            logger.exception("abort failed")

    def set_error(self, message: str) -> None:
        self._state.error_message = message
        logger.error(f"Error set: {message}")
        self._set_status(AgentStatus.ERROR)

    # --- Iteration Budget ---

    def can_continue(self) -> bool:
        if self._state.status is AgentStatus.ERROR:
            return False
        return self._state.iteration < self._state.max_iterations

    def increment_iteration(self) -> bool:
        """Count one iteration; returns whether the run may continue."""
        if self._state.status is AgentStatus.WAITING_FOR_APPROVAL:
            logger.debug("Iteration not counted while waiting for approval")
            return self.can_continue()

        with self._lock:
            self._state.iteration += 1
            iteration = self._state.iteration
        logger.debug(f"Iteration incremented: {iteration}")

        if self._on_iteration_complete is not None:
            try:
                self._on_iteration_complete(iteration, self.get_state())
            except Exception:
                logger.exception("on_iteration_complete callback failed")
        return self.can_continue()

    def is_near_iteration_limit(self) -> bool:
        remaining = self._state.max_iterations - self._state.iteration
        return remaining <= ITERATION_WARNING_THRESHOLD

    def get_iteration_warning_prompt(self) -> str | None:
        if not self.is_near_iteration_limit():
            return None
        return ITERATION_WARNING_PROMPT.format(max_iterations=self._state.max_iterations)

    # --- Tool Execution ---

    def available_tools(self) -> list[str]:
        return self._registry.available_tools

    async def execute_tool(
        self,
        name: str,
        params: dict[str, Any],
        *,
        approved: bool = False,
    ) -> ToolResult:
        """
        Run one tool call through the gate and the registry.

        Returns a ToolResult in every case; unknown tools leave the session
        untouched, denials are recorded as zero-duration failures.
        `approved=True` skips the gate for a call a human already confirmed.
        """
        try:
            return await self._execute_tool(name, params, approved)
        except Exception as e:
            logger.exception(f"Tool execution failed: {name}")
            if self._state.status in (AgentStatus.EXECUTING, AgentStatus.WAITING_FOR_APPROVAL):
                self._state.pending_approval = None
                self._set_status(AgentStatus.THINKING)
            return ToolResult.fail(str(e))

    async def _execute_tool(self, name: str, params: dict[str, Any], approved: bool) -> ToolResult:
        tool = self._registry.get(name)
        if tool is None:
            error = f"Unknown agent tool: {name}"
            logger.error(error)
            return ToolResult.fail(error)

        gated = not (approved or self._auto_approve_all)
        if gated and needs_approval(name, params, self._settings, tool.category):
            request = ApprovalRequest(
                tool_name=name,
                params=params,
                reason=approval_reason(name, tool.category),
                category=tool.category,
            )
            if not await self._request_approval(request):
                logger.info(f"Tool {name} not approved")
                result = ToolResult.fail(NOT_APPROVED_ERROR)
                self._record(name, params, result, time.time(), 0.0)
                return result

        self._set_status(AgentStatus.EXECUTING)
        started_at = time.time()
        start = time.perf_counter()

        result = await self._registry.execute_async(name, params, timeout=self._tool_timeout)

        duration_ms = (time.perf_counter() - start) * 1000
        record = self._record(name, params, result, started_at, duration_ms)

        if self._on_tool_executed is not None:
            try:
                self._on_tool_executed(record)
            except Exception:
                logger.exception("on_tool_executed callback failed")

        if self._state.status is AgentStatus.EXECUTING:
            self._set_status(AgentStatus.THINKING)
        return result

    async def _request_approval(self, request: ApprovalRequest) -> bool:
        if self._on_approval_needed is None:
            return False

        self._state.pending_approval = request
        self._set_status(AgentStatus.WAITING_FOR_APPROVAL)
        waited_from = time.perf_counter()
        try:
            approved = bool(await self._on_approval_needed(request))
        except Exception as e:
            logger.error(f"Approval request failed: {e}")
            approved = False
        finally:
            with self._lock:
                self._state.approval_wait_ms += (time.perf_counter() - waited_from) * 1000
            self._state.pending_approval = None

        if self._state.status is AgentStatus.WAITING_FOR_APPROVAL:
            if not approved:
                self._set_status(AgentStatus.THINKING)
        elif approved:
            # Aborted or errored while waiting
            logger.info(f"Dropping approved call to {request.tool_name}: session is {self._state.status.value}")
            return False
        return approved

    def _record(
        self,
        name: str,
        params: dict[str, Any],
        result: ToolResult,
        started_at: float,
        duration_ms: float,
    ) -> ToolCallRecord:
        record = ToolCallRecord(
            id=f"{int(started_at * 1000)}-{uuid.uuid4().hex[:9]}",
            name=name,
            params=params,
            result=result,
            timestamp_start=started_at,
            duration_ms=duration_ms,
        )
        with self._lock:
            self._state.tool_calls.append(record)
            self._state.total_tool_calls += 1
            self._state.last_tool_call = record
            self._apply_effect(result)
        return record

    def _apply_effect(self, result: ToolResult) -> None:
        """File effects count on success only; a command counts once started."""
        effect = result.effect
        if isinstance(effect, CommandRun):
            self._state.commands_executed.append(effect.command)
        elif not result.success:
            return
        elif isinstance(effect, FileCreated):
            self._state.files_created.append(effect.path)
        elif isinstance(effect, FileModified):
            self._state.files_modified.append(effect.path)

    # --- Summary ---

    def get_session_summary(self) -> str:
        state = self._state
        parts = [f"{state.iteration} iterations", f"{state.total_tool_calls} tool calls"]
        if state.files_created:
            parts.append(f"Files created: {', '.join(state.files_created)}")
        if state.files_modified:
            parts.append(f"Files modified: {', '.join(state.files_modified)}")
        if state.commands_executed:
            parts.append(f"Commands: {', '.join(state.commands_executed)}")
        return " | ".join(parts)


def create_orchestrator(
    registry: ToolRegistry,
    settings: AgentSettings | None = None,
    **options: Any,
) -> Orchestrator:
    """Build an independent orchestrator bound to `registry`."""
    return Orchestrator(registry, settings, **options)
