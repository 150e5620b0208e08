"""Shared fixtures for the agentd test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from agentd.tools import ToolRegistry, create_registry
from agentd.tools.workspace import context


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the workspace tools at a fresh temp directory."""
    root = tmp_path / "project"
    root.mkdir()
    monkeypatch.setattr(context, "WORKSPACE_DIR", root)
    return root.resolve()


@pytest.fixture
def registry(workspace: Path) -> ToolRegistry:
    """Registry with the built-in workspace provider."""
    return create_registry()


class EventRecorder:
    """Collects bridge events in emission order."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def __call__(self, event: dict[str, Any]) -> None:
        self.events.append(event)


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()
