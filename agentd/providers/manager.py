"""
Provider manager: keeps registry bindings in step with the MCP config.

Every configured server is connected concurrently. A server whose client
cannot be created, or whose tools cannot be listed, is still recorded in the
registry as UNAVAILABLE with a reason, so the rest keep working and the
failure stays visible.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from ..tools import ToolRegistry
from .client import ProviderConnection, open_mcp_connection
from .config import RESERVED_SERVER_NAMES, McpConfig, ServerConfig, validate_server_config

logger = logging.getLogger("agentd.providers")

ConnectionFactory = Callable[[str, ServerConfig], Awaitable[ProviderConnection]]

TOOLS_UNAVAILABLE = "could not retrieve tools from server"
CONNECT_FAILED = "could not connect to server"


class ProviderManager:
    """Owns external provider connections for one registry."""

    def __init__(
        self,
        registry: ToolRegistry,
        connect: ConnectionFactory = open_mcp_connection,
    ) -> None:
        self._registry = registry
        self._connect = connect
        self._config = McpConfig()
        self._connections: dict[str, ProviderConnection | None] = {}

    @property
    def config(self) -> McpConfig:
        return self._config

    @property
    def server_names(self) -> list[str]:
        return list(self._connections.keys())

    async def update_config(self, config: McpConfig) -> dict[str, Any]:
        """Replace the config, reconnect every server, return status()."""
        logger.debug(f"updating config: {config.to_dict()}")
        await self.close_all()
        self._config = config

        servers = {}
        for name, raw in config.mcp_servers.items():
            if name in RESERVED_SERVER_NAMES:
                logger.error(f"Skipping MCP server with reserved name: {name}")
                continue
            servers[name] = raw

        await asyncio.gather(*(self._add_server(name, raw) for name, raw in servers.items()))
        return self.status()

    async def _add_server(self, name: str, raw: dict[str, Any]) -> None:
        connection: ProviderConnection | None = None
        try:
            server_config = validate_server_config(name, raw)
            connection = await self._connect(name, server_config)
        except Exception as e:
            logger.error(f"Failed to initialize MCP client for server: {name}: {e}")
            self._connections[name] = None
            self._registry.mark_unavailable(name, str(e))
            return

        self._connections[name] = connection
        await self._register(name, connection)

    async def _register(self, name: str, connection: ProviderConnection) -> None:
        try:
            tools = await connection.list_tools()
        except Exception as e:
            logger.error(f"Failed to get tools from server {name}: {e}")
            self._registry.mark_unavailable(name, TOOLS_UNAVAILABLE, connection=connection)
            return
        self._registry.register_provider(name, tools, connection=connection)

    async def check_availability(self) -> dict[str, Any]:
        """Re-list tools on every known server, reconnecting missing clients."""

        async def check(name: str) -> None:
            connection = self._connections.get(name)
            logger.debug(f'Checking MCP server "{name}" availability: start')
            if connection is None:
                try:
                    server_config = validate_server_config(name, self._config.mcp_servers[name])
                    connection = await self._connect(name, server_config)
                except Exception as e:
                    logger.error(f"Failed to connect to server {name}: {e}")
                    self._registry.mark_unavailable(name, CONNECT_FAILED)
                    return
                self._connections[name] = connection
            await self._register(name, connection)
            logger.debug(f'Checking MCP server "{name}" availability: end')

        await asyncio.gather(*(check(name) for name in list(self._connections)))
        return self.status()

    async def close_all(self) -> None:
        """Close every client and drop its provider from the registry."""

        async def close(name: str, connection: ProviderConnection | None) -> None:
            if connection is not None:
                try:
                    await connection.close()
                except Exception as e:
                    logger.error(f"Error closing client for {name}: {e}")
            self._registry.unregister_provider(name)

        connections, self._connections = self._connections, {}
        await asyncio.gather(*(close(n, c) for n, c in connections.items()))

    def status(self) -> dict[str, Any]:
        """Per-server status for the configured servers, JSON-ready."""
        bindings = self._registry.providers()
        return {
            name: bindings[name].to_dict()
            for name in self._connections
            if name in bindings
        }
