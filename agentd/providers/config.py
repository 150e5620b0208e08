"""
External tool-provider (MCP server) configuration.

Three transports are supported:
- stdio: {"command", "args"?, "cwd"?, "env"?}; type may be omitted
- sse: {"type": "sse", "url", "headers"?}
- streamable-http: {"type": "streamable-http", "url", "headers"?}

validate_server_config() applies the structural rules first (so errors name
the actual mistake) and then the pydantic models.
"""

from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import AnyUrl, BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..tools import WORKSPACE_PROVIDER_ID


# Provider ids owned by built-in tools
RESERVED_SERVER_NAMES = frozenset({WORKSPACE_PROVIDER_ID})


class ConfigError(ValueError):
    """Invalid provider configuration."""


class StdioServerConfig(BaseModel):
    type: Literal["stdio"] = "stdio"
    command: str = Field(..., min_length=1)
    args: list[str] = Field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] | None = None

    @field_validator("command")
    @classmethod
    def _command_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Command cannot be empty")
        return value


class SSEServerConfig(BaseModel):
    type: Literal["sse"] = "sse"
    url: AnyUrl
    headers: dict[str, str] | None = None


class StreamableHTTPServerConfig(BaseModel):
    type: Literal["streamable-http"] = "streamable-http"
    url: AnyUrl
    headers: dict[str, str] | None = None


ServerConfig = Union[StdioServerConfig, SSEServerConfig, StreamableHTTPServerConfig]

_MODELS: dict[str, type[BaseModel]] = {
    "stdio": StdioServerConfig,
    "sse": SSEServerConfig,
    "streamable-http": StreamableHTTPServerConfig,
}


def validate_server_config(server_name: str, config: dict[str, Any]) -> ServerConfig:
    """Validate one server entry, raising ConfigError with a readable message."""
    if server_name in RESERVED_SERVER_NAMES:
        raise ConfigError(f'server name "{server_name}" is reserved for built-in tools.')
    if not isinstance(config, dict):
        raise ConfigError(f'Invalid configuration for server "{server_name}": expected an object')

    data = dict(config)
    has_command = data.get("command") is not None
    has_url = data.get("url") is not None

    if has_command and has_url:
        raise ConfigError('cannot have "command" and "url" defined for the same server.')

    if not data.get("type") and has_command:
        data["type"] = "stdio"

    if has_url and not data.get("type"):
        raise ConfigError('missing "type" field, only "sse" and "streamable-http" are valid options.')

    if data.get("type") not in _MODELS:
        raise ConfigError(
            'provided "type" is invalid, only "stdio", "sse" or "streamable-http" are valid options.'
        )

    if data["type"] == "stdio" and not has_command:
        raise ConfigError('missing "command" field.')

    if data["type"] in ("sse", "streamable-http") and not has_url:
        raise ConfigError('missing "url" field.')

    try:
        return _MODELS[data["type"]].model_validate(data)  # type: ignore[return-value]
    except ValidationError as e:
        messages = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f'Invalid configuration for server "{server_name}": {messages}') from e


class McpConfig(BaseModel):
    """The full provider map, as persisted and exchanged with clients."""

    model_config = ConfigDict(populate_by_name=True)

    mcp_servers: dict[str, dict[str, Any]] = Field(default_factory=dict, alias="mcpServers")

    def validated(self) -> dict[str, ServerConfig]:
        """Validate every server entry; raises ConfigError on the first bad one."""
        return {
            name: validate_server_config(name, raw) for name, raw in self.mcp_servers.items()
        }

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
