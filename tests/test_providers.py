"""
Tests for external tool providers.

MCP servers are replaced by in-memory fakes: config validation and the
manager need no network, and McpConnection is driven with a fake session.
"""

from __future__ import annotations

import sys
import textwrap
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from agentd.providers import (
    ConfigError,
    McpConfig,
    McpConnection,
    ProviderManager,
    SSEServerConfig,
    StdioServerConfig,
    StreamableHTTPServerConfig,
    validate_server_config,
)
from agentd.providers.client import content_to_text
from agentd.providers.manager import CONNECT_FAILED, TOOLS_UNAVAILABLE
from agentd.tools import ProviderStatus, Tool, ToolRegistry, ToolResult, ToolSpec


# --- Fakes ---


class FakeConnection:
    """ProviderConnection with canned tools."""

    def __init__(self, name: str, tools: dict[str, Tool] | None = None, fail_listing: bool = False) -> None:
        self.name = name
        self._tools = tools or {}
        self.fail_listing = fail_listing
        self.closed = False

    async def list_tools(self) -> dict[str, Tool]:
        if self.fail_listing:
            raise ConnectionError("server went away")
        return self._tools

    async def close(self) -> None:
        self.closed = True


def _echo_tool(name: str) -> Tool:
    async def handler(**kwargs: Any) -> ToolResult:
        return ToolResult.ok(kwargs)

    return Tool(
        spec=ToolSpec(
            name,
            f"{name} tool",
            {"type": "object", "properties": {"q": {"type": "string"}}, "additionalProperties": False},
        ),
        execute=handler,
    )


class FakeFactory:
    """Connection factory that records every connect attempt."""

    def __init__(self) -> None:
        self.connections: dict[str, FakeConnection] = {}
        self.attempts: list[str] = []
        self.refuse: set[str] = set()

    async def __call__(self, name: str, config: Any) -> FakeConnection:
        self.attempts.append(name)
        if name in self.refuse:
            raise ConnectionError(f"connection refused by {name}")
        connection = FakeConnection(name, {f"{name}_search": _echo_tool(f"{name}_search")})
        self.connections[name] = connection
        return connection


# --- Config Validation ---


class TestValidateServerConfig:
    """validate_server_config() rules and messages."""

    def test_stdio_inferred_from_command(self) -> None:
        config = validate_server_config("fs", {"command": "npx", "args": ["-y", "server-fs"]})
        assert isinstance(config, StdioServerConfig)
        assert config.args == ["-y", "server-fs"]

    def test_sse(self) -> None:
        config = validate_server_config("docs", {"type": "sse", "url": "http://localhost:8080/sse"})
        assert isinstance(config, SSEServerConfig)

    def test_streamable_http(self) -> None:
        config = validate_server_config(
            "api", {"type": "streamable-http", "url": "https://example.com/mcp", "headers": {"X-Key": "k"}}
        )
        assert isinstance(config, StreamableHTTPServerConfig)
        assert config.headers == {"X-Key": "k"}

    def test_command_and_url_exclusive(self) -> None:
        with pytest.raises(ConfigError, match='cannot have "command" and "url"'):
            validate_server_config("x", {"command": "npx", "url": "http://localhost"})

    def test_url_requires_type(self) -> None:
        with pytest.raises(ConfigError, match='missing "type" field'):
            validate_server_config("x", {"url": "http://localhost"})

    def test_invalid_type(self) -> None:
        with pytest.raises(ConfigError, match='provided "type" is invalid'):
            validate_server_config("x", {"type": "websocket", "url": "ws://localhost"})

    def test_stdio_requires_command(self) -> None:
        with pytest.raises(ConfigError, match='missing "command" field'):
            validate_server_config("x", {"type": "stdio"})

    def test_sse_requires_url(self) -> None:
        with pytest.raises(ConfigError, match='missing "url" field'):
            validate_server_config("x", {"type": "sse"})

    def test_blank_command_rejected(self) -> None:
        with pytest.raises(ConfigError, match='Invalid configuration for server "x"'):
            validate_server_config("x", {"command": "   "})

    def test_bad_url_rejected(self) -> None:
        with pytest.raises(ConfigError, match="url"):
            validate_server_config("x", {"type": "sse", "url": "not a url"})

    def test_config_error_is_value_error(self) -> None:
        assert issubclass(ConfigError, ValueError)

    def test_builtin_provider_name_reserved(self) -> None:
        with pytest.raises(ConfigError, match="reserved"):
            validate_server_config("workspace", {"command": "npx"})
        with pytest.raises(ConfigError, match="reserved"):
            McpConfig(mcp_servers={"workspace": {"command": "npx"}}).validated()


class TestMcpConfig:
    def test_alias_round_trip(self) -> None:
        config = McpConfig.model_validate({"mcpServers": {"fs": {"command": "npx"}}})
        assert config.mcp_servers == {"fs": {"command": "npx"}}
        assert config.to_dict() == {"mcpServers": {"fs": {"command": "npx"}}}

    def test_validated_raises_on_first_bad_entry(self) -> None:
        config = McpConfig(mcp_servers={"ok": {"command": "npx"}, "bad": {"url": "http://x"}})
        with pytest.raises(ConfigError):
            config.validated()


# --- MCP Connection ---


class FakeSession:
    """Stands in for mcp.ClientSession."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.next_result: Any = None

    async def list_tools(self) -> Any:
        return SimpleNamespace(tools=[
            SimpleNamespace(
                name="query",
                description="Run a query",
                inputSchema={"type": "object", "properties": {"sql": {"type": "string"}}},
            ),
            SimpleNamespace(name="ping", description=None, inputSchema=None),
        ])

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        self.calls.append((name, arguments))
        return self.next_result


def _text(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="text", text=text)


class TestMcpConnection:
    """Tool wrapping and result mapping, with a fake session."""

    @pytest.fixture
    def connected(self) -> tuple[McpConnection, FakeSession]:
        connection = McpConnection("db", StdioServerConfig(command="db-server"))
        session = FakeSession()
        connection._session = session
        return connection, session

    @pytest.mark.asyncio
    async def test_list_tools_wraps_remote_tools(self, connected: tuple[McpConnection, FakeSession]) -> None:
        connection, session = connected
        session.next_result = SimpleNamespace(content=[_text("3 rows")], isError=False, structuredContent=None)

        tools = await connection.list_tools()

        assert sorted(tools) == ["ping", "query"]
        assert tools["ping"].description == "No description available"
        assert tools["ping"].parameters == {"type": "object", "properties": {}}

        result = await tools["query"].execute(sql="select 1")
        assert result == ToolResult.ok("3 rows")
        assert session.calls == [("query", {"sql": "select 1"})]

    @pytest.mark.asyncio
    async def test_error_result(self, connected: tuple[McpConnection, FakeSession]) -> None:
        connection, session = connected
        session.next_result = SimpleNamespace(content=[_text("table missing")], isError=True)

        result = await connection.call_tool("query", {})

        assert not result.success
        assert result.error == "table missing"

    @pytest.mark.asyncio
    async def test_structured_content_preferred(self, connected: tuple[McpConnection, FakeSession]) -> None:
        connection, session = connected
        session.next_result = SimpleNamespace(
            content=[_text('{"rows": 1}')], isError=False, structuredContent={"rows": 1}
        )
        assert (await connection.call_tool("query", {})).data == {"rows": 1}

    @pytest.mark.asyncio
    async def test_not_connected(self) -> None:
        connection = McpConnection("db", StdioServerConfig(command="db-server"))
        assert not connection.is_connected
        assert not (await connection.call_tool("query", {})).success
        with pytest.raises(ConnectionError):
            await connection.list_tools()

    def test_content_to_text(self) -> None:
        assert content_to_text([_text("a"), _text("b")]) == "a\nb"
        assert content_to_text(None) == ""


# --- MCP Connection over stdio ---


CALC_SERVER = textwrap.dedent(
    '''
    from mcp.server.fastmcp import FastMCP

    server = FastMCP("calc")


    @server.tool()
    def add(a: int, b: int) -> int:
        """Add two numbers."""
        return a + b


    @server.tool()
    def explode() -> str:
        """Always fails."""
        raise ValueError("calculator on fire")


    if __name__ == "__main__":
        server.run()
    '''
)


@pytest.fixture
def calc_server(tmp_path: Path) -> StdioServerConfig:
    """Stdio config launching a small FastMCP server in a subprocess."""
    script = tmp_path / "calc_server.py"
    script.write_text(CALC_SERVER)
    return StdioServerConfig(command=sys.executable, args=[str(script)])


class TestMcpConnectionLifecycle:
    """Real SDK transport: connect, list, call, close."""

    @pytest.mark.asyncio
    async def test_connect_list_call_close(self, calc_server: StdioServerConfig) -> None:
        connection = McpConnection("calc", calc_server)
        await connection.connect()
        try:
            assert connection.is_connected

            tools = await connection.list_tools()
            assert sorted(tools) == ["add", "explode"]
            assert tools["add"].description == "Add two numbers."
            assert set(tools["add"].parameters["properties"]) == {"a", "b"}

            added = await tools["add"].execute(a=2, b=3)
            assert added.success
            assert added.data in ("5", {"result": 5})

            failed = await connection.call_tool("explode", {})
            assert not failed.success
            assert "calculator on fire" in failed.error
        finally:
            await connection.close()

        assert not connection.is_connected
        assert not (await connection.call_tool("add", {"a": 1, "b": 1})).success

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, calc_server: StdioServerConfig) -> None:
        connection = McpConnection("calc", calc_server)
        await connection.close()
        await connection.connect()
        await connection.close()
        await connection.close()
        assert not connection.is_connected

    @pytest.mark.asyncio
    async def test_missing_command_raises_from_connect(self, tmp_path: Path) -> None:
        connection = McpConnection("ghost", StdioServerConfig(command=str(tmp_path / "no-such-server")))

        with pytest.raises(Exception):
            await connection.connect()

        assert not connection.is_connected

    @pytest.mark.asyncio
    async def test_silent_server_hits_init_timeout(self) -> None:
        config = StdioServerConfig(command=sys.executable, args=["-c", "import time; time.sleep(30)"])
        connection = McpConnection("mute", config, init_timeout=0.5)

        with pytest.raises(Exception):
            await connection.connect()

        assert not connection.is_connected

    @pytest.mark.asyncio
    async def test_manager_with_default_factory(self, calc_server: StdioServerConfig) -> None:
        registry = ToolRegistry()
        manager = ProviderManager(registry)
        try:
            status = await manager.update_config(McpConfig(mcp_servers={"calc": calc_server.model_dump()}))
            assert status["calc"]["status"] == "available"

            result = await registry.execute_async("add", {"a": 20, "b": 22})
            assert result.success
        finally:
            await manager.close_all()

        assert registry.get("add") is None


# --- Provider Manager ---


class TestProviderManager:
    """Syncing server connections into a registry."""

    @pytest.mark.asyncio
    async def test_update_config_registers_tools(self) -> None:
        registry = ToolRegistry()
        factory = FakeFactory()
        manager = ProviderManager(registry, connect=factory)

        status = await manager.update_config(McpConfig(mcp_servers={
            "docs": {"type": "sse", "url": "http://localhost:1/sse"},
            "fs": {"command": "npx"},
        }))

        assert sorted(factory.attempts) == ["docs", "fs"]
        assert registry.owner_of("docs_search") == "docs"
        assert status["fs"]["status"] == "available"
        # schemas are sanitized on the way in
        assert "additionalProperties" not in status["fs"]["tools"]["fs_search"]["parameters"]

    @pytest.mark.asyncio
    async def test_invalid_server_recorded_unavailable(self) -> None:
        registry = ToolRegistry()
        factory = FakeFactory()
        manager = ProviderManager(registry, connect=factory)

        status = await manager.update_config(McpConfig(mcp_servers={
            "bad": {"url": "http://localhost"},
            "fs": {"command": "npx"},
        }))

        assert status["bad"]["status"] == "unavailable"
        assert 'missing "type" field' in status["bad"]["error"]
        assert status["fs"]["status"] == "available"
        assert factory.attempts == ["fs"]

    @pytest.mark.asyncio
    async def test_connection_failure_recorded(self) -> None:
        registry = ToolRegistry()
        factory = FakeFactory()
        factory.refuse.add("fs")
        manager = ProviderManager(registry, connect=factory)

        status = await manager.update_config(McpConfig(mcp_servers={"fs": {"command": "npx"}}))

        assert status["fs"] == {"status": "unavailable", "tools": {}, "error": "connection refused by fs"}

    @pytest.mark.asyncio
    async def test_listing_failure_recorded(self) -> None:
        registry = ToolRegistry()

        async def connect(name: str, config: Any) -> FakeConnection:
            return FakeConnection(name, fail_listing=True)

        manager = ProviderManager(registry, connect=connect)
        status = await manager.update_config(McpConfig(mcp_servers={"fs": {"command": "npx"}}))

        assert status["fs"]["error"] == TOOLS_UNAVAILABLE
        assert registry.providers()["fs"].status is ProviderStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_update_closes_previous_clients(self) -> None:
        registry = ToolRegistry()
        factory = FakeFactory()
        manager = ProviderManager(registry, connect=factory)

        await manager.update_config(McpConfig(mcp_servers={"old": {"command": "npx"}}))
        old = factory.connections["old"]
        await manager.update_config(McpConfig(mcp_servers={"new": {"command": "npx"}}))

        assert old.closed
        assert registry.get("old_search") is None
        assert registry.is_known("new_search")
        assert manager.server_names == ["new"]

    @pytest.mark.asyncio
    async def test_check_availability_reconnects(self) -> None:
        registry = ToolRegistry()
        factory = FakeFactory()
        factory.refuse.add("fs")
        manager = ProviderManager(registry, connect=factory)
        await manager.update_config(McpConfig(mcp_servers={"fs": {"command": "npx"}}))

        factory.refuse.clear()
        status = await manager.check_availability()

        assert status["fs"]["status"] == "available"
        assert registry.is_known("fs_search")

    @pytest.mark.asyncio
    async def test_check_availability_still_down(self) -> None:
        registry = ToolRegistry()
        factory = FakeFactory()
        factory.refuse.add("fs")
        manager = ProviderManager(registry, connect=factory)
        await manager.update_config(McpConfig(mcp_servers={"fs": {"command": "npx"}}))

        status = await manager.check_availability()

        assert status["fs"]["error"] == CONNECT_FAILED

    @pytest.mark.asyncio
    async def test_close_all(self) -> None:
        registry = ToolRegistry()
        factory = FakeFactory()
        manager = ProviderManager(registry, connect=factory)
        await manager.update_config(McpConfig(mcp_servers={"fs": {"command": "npx"}}))

        await manager.close_all()

        assert factory.connections["fs"].closed
        assert registry.providers() == {}
        assert manager.status() == {}

    @pytest.mark.asyncio
    async def test_reserved_name_never_touches_builtin_tools(self, registry: ToolRegistry) -> None:
        builtin = sorted(registry.available_tools)
        factory = FakeFactory()
        manager = ProviderManager(registry, connect=factory)

        await manager.update_config(McpConfig(mcp_servers={"workspace": {"command": "npx"}}))
        await manager.update_config(McpConfig())

        assert factory.attempts == []
        assert sorted(registry.available_tools) == builtin
        assert registry.providers()["workspace"].status is ProviderStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_remote_tool_executes_through_registry(self) -> None:
        registry = ToolRegistry()
        manager = ProviderManager(registry, connect=FakeFactory())
        await manager.update_config(McpConfig(mcp_servers={"fs": {"command": "npx"}}))

        result = await registry.execute_async("fs_search", {"q": "todo"})

        assert result == ToolResult.ok({"q": "todo"})
