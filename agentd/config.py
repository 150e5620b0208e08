"""
Centralized configuration for agent mode and external providers.

Architecture:
- AgentSettings: immutable approval / iteration policy
- McpSettings: provider map plus the LLM step budget for provider tools
- SettingsStore: JSON persistence under the data directory
- Environment: AGENTD_DATA_DIR, AGENTD_TOOL_TIMEOUT (AGENTD_WORKSPACE is read
  by the workspace tools)
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from .providers.config import McpConfig

logger = logging.getLogger("agentd.config")


# --- Environment ---

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"
DATA_DIR = Path(os.environ.get("AGENTD_DATA_DIR", DEFAULT_DATA_DIR))

# Seconds; 0 or negative disables the per-call handler timeout
DEFAULT_TOOL_TIMEOUT = 120.0


def tool_timeout_from_env() -> float | None:
    raw = os.environ.get("AGENTD_TOOL_TIMEOUT")
    if raw is None:
        return DEFAULT_TOOL_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid AGENTD_TOOL_TIMEOUT={raw!r}")
        return DEFAULT_TOOL_TIMEOUT
    return value if value > 0 else None


# --- Settings Types ---


@dataclass(frozen=True)
class AgentSettings:
    """Agent mode policy. Defaults auto-approve file creation only."""

    enabled: bool = False
    auto_approve_file_creation: bool = True
    auto_approve_file_modification: bool = False
    auto_approve_commands: bool = False
    max_iterations: int = 25

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentSettings:
        """Create from a (possibly partial) dict; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def updated(self, **changes: Any) -> AgentSettings:
        return replace(self, **changes)


@dataclass(frozen=True)
class McpSettings:
    """External provider config plus the max LLM steps when they are in use."""

    mcp_config: McpConfig = field(default_factory=McpConfig)
    max_llm_steps: int = 5

    def to_dict(self) -> dict[str, Any]:
        return {
            "mcpConfig": self.mcp_config.to_dict(),
            "maxLLMSteps": self.max_llm_steps,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> McpSettings:
        return cls(
            mcp_config=McpConfig.model_validate(data.get("mcpConfig") or {}),
            max_llm_steps=int(data.get("maxLLMSteps", 5)),
        )


# --- Settings Store ---


class SettingsStore:
    """
    Persistent settings storage using JSON files.

    Directory structure:
        data/agent_settings.json
        data/mcp_settings.json

    Missing or unreadable files yield defaults.
    """

    AGENT_FILE = "agent_settings.json"
    MCP_FILE = "mcp_settings.json"

    def __init__(self, data_dir: str | Path | None = None) -> None:
        self._data_dir = Path(data_dir) if data_dir is not None else DATA_DIR

    def _read(self, filename: str) -> dict[str, Any] | None:
        path = self._data_dir / filename
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load {filename}: {e}")
            return None
        return data if isinstance(data, dict) else None

    def _write(self, filename: str, data: dict[str, Any]) -> None:
        self._data_dir.mkdir(parents=True, exist_ok=True)
        path = self._data_dir / filename
        # Write atomically via temp file
        temp_path = path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            temp_path.replace(path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise

    def load_agent_settings(self) -> AgentSettings:
        data = self._read(self.AGENT_FILE)
        if data is None:
            return AgentSettings()
        try:
            return AgentSettings.from_dict(data)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to load agent mode settings: {e}")
            return AgentSettings()

    def save_agent_settings(self, settings: AgentSettings) -> None:
        self._write(self.AGENT_FILE, settings.to_dict())
        logger.debug("Agent mode settings saved")

    def load_mcp_settings(self) -> McpSettings:
        data = self._read(self.MCP_FILE)
        if data is None:
            return McpSettings()
        try:
            return McpSettings.from_dict(data)
        except (TypeError, ValueError) as e:
            logger.error(f"Error parsing saved mcp config: {e}")
            return McpSettings()

    def save_mcp_settings(self, settings: McpSettings) -> None:
        self._write(self.MCP_FILE, settings.to_dict())
