"""
External tool providers.

- config: MCP server config models and validation
- client: ProviderConnection contract and the mcp-SDK implementation
- manager: ProviderManager syncing connections into a ToolRegistry
"""

from .client import McpConnection, ProviderConnection, open_mcp_connection
from .config import (
    ConfigError,
    McpConfig,
    ServerConfig,
    SSEServerConfig,
    StdioServerConfig,
    StreamableHTTPServerConfig,
    validate_server_config,
)
from .manager import ProviderManager

__all__ = [
    "McpConnection",
    "ProviderConnection",
    "open_mcp_connection",
    "ConfigError",
    "McpConfig",
    "ServerConfig",
    "SSEServerConfig",
    "StdioServerConfig",
    "StreamableHTTPServerConfig",
    "validate_server_config",
    "ProviderManager",
]
