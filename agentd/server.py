"""
FastAPI server for the agent daemon.

Endpoints:
- GET  /health                  - Health check and session status
- GET  /v1/tools                - Describable tool specs from every provider
- GET  /v1/providers            - Provider status (including unavailable ones)
- POST /v1/providers/config     - Replace the MCP config and reconnect
- POST /v1/providers/check      - Re-check every configured server
- GET  /v1/settings             - Agent mode settings
- POST /v1/settings             - Partial settings update (persisted)
- POST /v1/session/start        - Start an agent run
- POST /v1/session/end          - Complete the run and return its summary
- POST /v1/session/abort        - Stop the run (back to idle)
- POST /v1/session/reset        - Discard all run state
- GET  /v1/session              - Session snapshot
- POST /v1/session/iteration    - Count one LLM iteration
- POST /v1/invoke-tool          - Execute a tool through the orchestrator
- GET  /v1/approvals            - Pending approval requests
- POST /v1/approvals/{id}       - Approve or reject a pending request
- POST /v1/tool-invocations     - Resolve approval sentinels in a transcript

Startup behavior:
- Saved MCP config is loaded and every server connected
- Provider clients are closed on shutdown
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from . import __version__
from .approval import ApprovalRequest
from .bridge import InvocationBridge
from .config import McpSettings, SettingsStore, tool_timeout_from_env
from .orchestrator import Orchestrator, create_orchestrator
from .providers import ConfigError, McpConfig, ProviderManager
from .tools import ToolRegistry, create_registry
from .tools.workspace.context import reset_workspace_root, set_workspace_root

logger = logging.getLogger("agentd.server")

# Seconds a pending approval waits for a decision before it is denied
DEFAULT_APPROVAL_TIMEOUT = 300.0


def approval_timeout_from_env() -> float | None:
    raw = os.environ.get("AGENTD_APPROVAL_TIMEOUT")
    if raw is None:
        return DEFAULT_APPROVAL_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid AGENTD_APPROVAL_TIMEOUT={raw!r}")
        return DEFAULT_APPROVAL_TIMEOUT
    return value if value > 0 else None


# --- Request/Response Models ---


class HealthResponse(BaseModel):
    """Response body for /health endpoint."""

    status: str
    version: str
    agent_status: str
    available_tools: list[str]
    providers: list[str]


class ToolInfo(BaseModel):
    """Info about a tool."""

    name: str
    description: str
    parameters: dict[str, Any]
    provider: str | None = None


class McpConfigRequest(BaseModel):
    """Request body for /v1/providers/config."""

    mcp_config: dict[str, Any] = Field(..., alias="mcpConfig")
    max_llm_steps: int | None = Field(default=None, alias="maxLLMSteps", ge=1)


class SettingsUpdateRequest(BaseModel):
    """Partial agent mode settings; omitted fields keep their value."""

    enabled: bool | None = None
    auto_approve_file_creation: bool | None = None
    auto_approve_file_modification: bool | None = None
    auto_approve_commands: bool | None = None
    max_iterations: int | None = Field(default=None, ge=1)


class SessionStartRequest(BaseModel):
    """Request body for /v1/session/start."""

    task: str = Field(..., description="Task the agent is working on")


class IterationResponse(BaseModel):
    iteration: int
    can_continue: bool
    near_limit: bool
    warning_prompt: str | None = None


class ToolInvokeRequest(BaseModel):
    """Request body for /v1/invoke-tool endpoint."""

    tool_name: str = Field(..., description="Name of tool to invoke")
    arguments: dict[str, Any] = Field(
        default_factory=dict, description="Tool arguments"
    )


class ToolInvokeResponse(BaseModel):
    """Response body for /v1/invoke-tool endpoint."""

    tool_name: str
    result: dict[str, Any]
    latency_ms: float


class ApprovalDecision(BaseModel):
    approved: bool


class ToolInvocationsRequest(BaseModel):
    """Request body for /v1/tool-invocations."""

    messages: list[dict[str, Any]]


class ToolInvocationsResponse(BaseModel):
    messages: list[dict[str, Any]]
    events: list[dict[str, Any]]


# --- Application State ---


class AppState:
    """
    Everything the daemon owns: one registry, its provider manager, the one
    live orchestrator, the bridge, and the approvals waiting on a client.
    """

    def __init__(
        self,
        store: SettingsStore | None = None,
        workspace: str | Path | None = None,
        tool_timeout: float | None = None,
        approval_timeout: float | None = None,
    ) -> None:
        self.store = store or SettingsStore()
        self.workspace = Path(workspace).resolve() if workspace is not None else None
        timeout = tool_timeout if tool_timeout is not None else tool_timeout_from_env()
        self.approval_timeout = (
            approval_timeout if approval_timeout is not None else approval_timeout_from_env()
        )

        self.registry: ToolRegistry = create_registry()
        self.providers = ProviderManager(self.registry)
        self.mcp_settings: McpSettings = self.store.load_mcp_settings()
        self.orchestrator: Orchestrator = create_orchestrator(
            self.registry,
            self.store.load_agent_settings(),
            on_approval_needed=self.request_approval,
            tool_timeout=timeout,
        )
        self.bridge = InvocationBridge(self.registry, timeout=timeout, orchestrator=self.orchestrator)

        self._approvals: dict[str, tuple[ApprovalRequest, asyncio.Future[bool]]] = {}
        self._approvals_lock = threading.Lock()

    # --- Approvals ---

    async def request_approval(self, request: ApprovalRequest) -> bool:
        """Park the request until a client decides or the timeout denies it."""
        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        with self._approvals_lock:
            self._approvals[request.id] = (request, future)
        logger.info(f"Approval requested for {request.tool_name} ({request.id})")

        try:
            return await asyncio.wait_for(future, timeout=self.approval_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Approval {request.id} timed out; denying {request.tool_name}")
            return False
        finally:
            with self._approvals_lock:
                self._approvals.pop(request.id, None)

    def pending_approvals(self) -> list[ApprovalRequest]:
        with self._approvals_lock:
            return [request for request, _ in self._approvals.values()]

    def resolve_approval(self, approval_id: str, approved: bool) -> bool:
        """Deliver a decision; False when no such request is pending."""
        with self._approvals_lock:
            entry = self._approvals.get(approval_id)
        if entry is None:
            return False
        _, future = entry
        if future.done():
            return False
        future.get_loop().call_soon_threadsafe(_set_decision, future, approved)
        logger.info(f"Approval {approval_id} resolved: approved={approved}")
        return True

    def cancel_approvals(self) -> None:
        """Deny everything still pending (abort, reset, shutdown)."""
        with self._approvals_lock:
            entries = list(self._approvals.values())
        for _, future in entries:
            if not future.done():
                future.get_loop().call_soon_threadsafe(_set_decision, future, False)

    # --- Workspace ---

    @asynccontextmanager
    async def in_workspace(self) -> AsyncIterator[None]:
        """Run tool calls against this app's workspace root, if one is set."""
        if self.workspace is None:
            yield
            return
        token = set_workspace_root(self.workspace)
        try:
            yield
        finally:
            reset_workspace_root(token)


def _set_decision(future: asyncio.Future[bool], approved: bool) -> None:
    if not future.done():
        future.set_result(approved)


app_state = AppState()


# --- Application Setup ---


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager for startup/shutdown."""
    logger.info("Agent daemon starting...")
    logger.info(f"   Available tools: {app_state.registry.available_tools}")

    servers = app_state.mcp_settings.mcp_config.mcp_servers
    if servers:
        logger.info(f"   Connecting {len(servers)} MCP server(s)...")
        start_time = time.time()
        await app_state.providers.update_config(app_state.mcp_settings.mcp_config)
        elapsed = time.time() - start_time
        logger.info(f"   MCP servers ready in {elapsed:.1f}s")

    yield

    logger.info("Agent daemon shutting down...")
    app_state.cancel_approvals()
    await app_state.providers.close_all()


app = FastAPI(
    title="Agent Daemon",
    description="Tool registry, approval-gated agent runs and MCP providers",
    version=__version__,
    lifespan=lifespan,
)


# --- Endpoints ---


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint with session status."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        agent_status=app_state.orchestrator.status.value,
        available_tools=app_state.registry.available_tools,
        providers=list(app_state.registry.providers().keys()),
    )


@app.get("/v1/tools", response_model=list[ToolInfo])
async def list_tools() -> list[ToolInfo]:
    """List describable tool specs (no handlers)."""
    registry = app_state.registry
    return [
        ToolInfo(
            name=name,
            description=spec.description,
            parameters=spec.parameters,
            provider=registry.owner_of(name),
        )
        for name, spec in registry.get_describable().items()
    ]


@app.get("/v1/providers")
async def list_providers() -> dict[str, Any]:
    """All provider bindings, including unavailable ones with their reason."""
    return {pid: binding.to_dict() for pid, binding in app_state.registry.providers().items()}


@app.post("/v1/providers/config")
async def update_provider_config(request: McpConfigRequest) -> dict[str, Any]:
    """Replace the MCP config, reconnect every server, persist on success."""
    try:
        config = McpConfig.model_validate(request.mcp_config)
        config.validated()
    except (ConfigError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    max_llm_steps = request.max_llm_steps or app_state.mcp_settings.max_llm_steps
    app_state.mcp_settings = McpSettings(mcp_config=config, max_llm_steps=max_llm_steps)
    app_state.store.save_mcp_settings(app_state.mcp_settings)

    return await app_state.providers.update_config(config)


@app.post("/v1/providers/check")
async def check_providers() -> dict[str, Any]:
    """Re-list tools on every configured server."""
    return await app_state.providers.check_availability()


@app.get("/v1/settings")
async def get_settings() -> dict[str, Any]:
    return {
        "agent": app_state.orchestrator.get_settings().to_dict(),
        "mcp": app_state.mcp_settings.to_dict(),
    }


@app.post("/v1/settings")
async def update_settings(request: SettingsUpdateRequest) -> dict[str, Any]:
    """Apply a partial settings update and persist it."""
    changes = request.model_dump(exclude_none=True)
    settings = app_state.orchestrator.update_settings(**changes)
    app_state.store.save_agent_settings(settings)
    return settings.to_dict()


@app.post("/v1/session/start")
async def start_session(request: SessionStartRequest) -> dict[str, Any]:
    app_state.orchestrator.start_session(request.task)
    return app_state.orchestrator.get_state().to_dict()


@app.post("/v1/session/end")
async def end_session() -> dict[str, Any]:
    state = app_state.orchestrator.end_session()
    return {
        "summary": app_state.orchestrator.get_session_summary(),
        "session": state.to_dict(),
    }


@app.post("/v1/session/abort")
async def abort_session() -> dict[str, Any]:
    app_state.orchestrator.abort()
    app_state.cancel_approvals()
    return app_state.orchestrator.get_state().to_dict()


@app.post("/v1/session/reset")
async def reset_session() -> dict[str, Any]:
    app_state.cancel_approvals()
    app_state.orchestrator.reset()
    return app_state.orchestrator.get_state().to_dict()


@app.get("/v1/session")
async def get_session() -> dict[str, Any]:
    orchestrator = app_state.orchestrator
    return {
        "session": orchestrator.get_state().to_dict(),
        "summary": orchestrator.get_session_summary(),
        "can_continue": orchestrator.can_continue(),
    }


@app.post("/v1/session/iteration", response_model=IterationResponse)
async def increment_iteration() -> IterationResponse:
    """Count one LLM iteration; clients stop when can_continue is false."""
    orchestrator = app_state.orchestrator
    can_continue = orchestrator.increment_iteration()
    return IterationResponse(
        iteration=orchestrator.get_state().iteration,
        can_continue=can_continue,
        near_limit=orchestrator.is_near_iteration_limit(),
        warning_prompt=orchestrator.get_iteration_warning_prompt(),
    )


@app.post("/v1/invoke-tool", response_model=ToolInvokeResponse)
async def invoke_tool(request: ToolInvokeRequest) -> ToolInvokeResponse:
    """
    Execute a tool through the orchestrator.

    Side-effecting tools may park on the approval gate until a client
    answers via /v1/approvals/{id}.
    """
    orchestrator = app_state.orchestrator
    if not orchestrator.can_continue():
        raise HTTPException(
            status_code=409,
            detail="Session cannot continue: iteration limit reached or session in error",
        )

    start_time = time.perf_counter()
    async with app_state.in_workspace():
        result = await orchestrator.execute_tool(request.tool_name, request.arguments)
    latency_ms = (time.perf_counter() - start_time) * 1000

    return ToolInvokeResponse(
        tool_name=request.tool_name,
        result=result.to_dict(),
        latency_ms=latency_ms,
    )


@app.get("/v1/approvals")
async def list_approvals() -> list[dict[str, Any]]:
    return [request.to_dict() for request in app_state.pending_approvals()]


@app.post("/v1/approvals/{approval_id}")
async def decide_approval(approval_id: str, decision: ApprovalDecision) -> dict[str, Any]:
    if not app_state.resolve_approval(approval_id, decision.approved):
        raise HTTPException(status_code=404, detail=f"No pending approval: {approval_id}")
    return {"id": approval_id, "approved": decision.approved}


@app.post("/v1/tool-invocations", response_model=ToolInvocationsResponse)
async def process_tool_invocations(request: ToolInvocationsRequest) -> ToolInvocationsResponse:
    """Replace APPROVE/REJECT sentinels in the last message with real results."""
    events: list[dict[str, Any]] = []

    async def emit(event: dict[str, Any]) -> None:
        events.append(event)

    async with app_state.in_workspace():
        messages = await app_state.bridge.process_tool_invocations(request.messages, emit)
    return ToolInvocationsResponse(messages=messages, events=events)


# --- CLI Entry Point ---


def main() -> None:
    """Run the daemon server."""
    import sys
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    host = "127.0.0.1"
    port = 5998

    # Parse CLI args
    args = sys.argv[1:]
    i = 0
    while i < len(args):
        if args[i] == "--host" and i + 1 < len(args):
            host = args[i + 1]
            i += 2
        elif args[i] == "--port" and i + 1 < len(args):
            port = int(args[i + 1])
            i += 2
        else:
            i += 1

    print(f"Starting agent daemon on {host}:{port}")
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
