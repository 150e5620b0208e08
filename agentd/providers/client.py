"""
Connections to external tool-provider servers over the Model Context Protocol.

A ProviderConnection is the only thing the rest of the system relies on:
it can list its tools (already wrapped as Tool objects whose handlers call
back into the server) and it can be closed. McpConnection implements it
with the `mcp` SDK for all three transports.

The SDK's transport contexts are anyio task groups and must be exited by
the task that entered them, so each connection owns a small runner task
that opens the contexts, signals readiness, and holds them open until
close() is called.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, Protocol, runtime_checkable

from ..tools import Tool, ToolResult, ToolSpec
from .config import ServerConfig, SSEServerConfig, StdioServerConfig, StreamableHTTPServerConfig

logger = logging.getLogger("agentd.providers")

DEFAULT_INIT_TIMEOUT = 30.0


@runtime_checkable
class ProviderConnection(Protocol):
    """Contract every external provider connection satisfies."""

    name: str

    async def list_tools(self) -> dict[str, Tool]: ...

    async def close(self) -> None: ...


def _import_mcp() -> tuple[Any, ...]:
    """Lazily import mcp client components.

    Returns:
        (ClientSession, StdioServerParameters, stdio_client, sse_client, streamablehttp_client)
    """
    from mcp import ClientSession, StdioServerParameters
    from mcp.client.sse import sse_client
    from mcp.client.stdio import stdio_client
    from mcp.client.streamable_http import streamablehttp_client

    return ClientSession, StdioServerParameters, stdio_client, sse_client, streamablehttp_client


def content_to_text(content: list[Any] | None) -> str:
    """Flatten MCP content items into one string."""
    parts: list[str] = []
    for item in content or []:
        text = getattr(item, "text", None)
        parts.append(text if isinstance(text, str) else str(item))
    return "\n".join(parts)


class McpConnection:
    """One live MCP client session."""

    def __init__(
        self,
        name: str,
        config: ServerConfig,
        init_timeout: float = DEFAULT_INIT_TIMEOUT,
    ) -> None:
        self.name = name
        self.config = config
        self._init_timeout = init_timeout
        self._session: Any = None
        self._runner: asyncio.Task[None] | None = None
        self._ready = asyncio.Event()
        self._closing = asyncio.Event()
        self._startup_error: BaseException | None = None

    @property
    def is_connected(self) -> bool:
        return self._session is not None and not self._closing.is_set()

    async def connect(self) -> None:
        """Open the transport and initialize the session."""
        if self._runner is not None:
            return
        self._runner = asyncio.create_task(self._run(), name=f"mcp-{self.name}")
        await self._ready.wait()
        if self._startup_error is not None:
            await self._runner
            self._runner = None
            raise self._startup_error

    async def _run(self) -> None:
        try:
            async with AsyncExitStack() as stack:
                self._session = await self._open(stack)
                await asyncio.wait_for(self._session.initialize(), timeout=self._init_timeout)
                self._ready.set()
                await self._closing.wait()
        except Exception as e:
            if not self._ready.is_set():
                self._startup_error = e
            else:
                logger.error(f"Connection to server {self.name!r} ended with error: {e}")
        finally:
            self._session = None
            self._ready.set()

    async def _open(self, stack: AsyncExitStack) -> Any:
        ClientSession, StdioServerParameters, stdio_client, sse_client, streamablehttp_client = _import_mcp()
        config = self.config

        if isinstance(config, StdioServerConfig):
            logger.debug(
                f"Creating STDIO client for {self.name!r} with command: {config.command!r} {' '.join(config.args)}"
            )
            params = StdioServerParameters(
                command=config.command,
                args=config.args,
                env=config.env,
                cwd=config.cwd,
            )
            read_stream, write_stream = await stack.enter_async_context(stdio_client(params))
        elif isinstance(config, SSEServerConfig):
            logger.debug(f"Creating SSE client for {self.name!r} with URL: {config.url}")
            read_stream, write_stream = await stack.enter_async_context(
                sse_client(str(config.url), headers=config.headers)
            )
        elif isinstance(config, StreamableHTTPServerConfig):
            logger.debug(f"Creating Streamable-HTTP client for {self.name!r} with URL: {config.url}")
            read_stream, write_stream, _get_session_id = await stack.enter_async_context(
                streamablehttp_client(str(config.url), headers=config.headers)
            )
        else:
            raise TypeError(f"Unsupported server config: {type(config).__name__}")

        return await stack.enter_async_context(ClientSession(read_stream, write_stream))

    async def list_tools(self) -> dict[str, Tool]:
        """Discover the server's tools, wrapped so they call back here."""
        if self._session is None:
            raise ConnectionError(f"Server {self.name!r} is not connected")

        result = await self._session.list_tools()
        tools: dict[str, Tool] = {}
        for remote in result.tools:
            spec = ToolSpec(
                name=remote.name,
                description=remote.description or "No description available",
                parameters=dict(remote.inputSchema or {"type": "object", "properties": {}}),
            )
            tools[remote.name] = Tool(spec=spec, execute=self._make_handler(remote.name))
        return tools

    def _make_handler(self, tool_name: str) -> Any:
        async def handler(**arguments: Any) -> ToolResult:
            return await self.call_tool(tool_name, arguments)

        handler.__name__ = tool_name
        return handler

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> ToolResult:
        """Invoke a tool on the server and map its result."""
        if self._session is None:
            return ToolResult.fail(f"Server {self.name!r} is not connected")

        logger.debug(f"calling tool {tool_name!r} on {self.name!r} with args: {arguments}")
        result = await self._session.call_tool(tool_name, arguments)
        text = content_to_text(result.content)
        if result.isError:
            return ToolResult.fail(text or f"Tool {tool_name} reported an error")

        structured = getattr(result, "structuredContent", None)
        return ToolResult.ok(structured if structured is not None else text)

    async def close(self) -> None:
        """Close the session and its transport."""
        if self._runner is None:
            return
        logger.debug(f"Closing client for server {self.name!r}")
        self._closing.set()
        runner, self._runner = self._runner, None
        await runner


async def open_mcp_connection(name: str, config: ServerConfig) -> McpConnection:
    """Default connection factory used by ProviderManager."""
    connection = McpConnection(name, config)
    await connection.connect()
    return connection
