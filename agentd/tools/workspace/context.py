"""
Shared workspace context for the built-in tools.

Every path a workspace tool touches is resolved against the workspace root
and must stay inside it. The root comes from AGENTD_WORKSPACE and can be
overridden per task with set_workspace_root().
"""

from __future__ import annotations

import contextvars
import os
from pathlib import Path


# --- Configuration ---

DEFAULT_WORKSPACE_DIR = Path.cwd()
WORKSPACE_DIR = Path(os.environ.get("AGENTD_WORKSPACE", DEFAULT_WORKSPACE_DIR))

# Directories never descended into while listing or searching
SKIP_DIRS = frozenset({"node_modules", ".git", ".next", "dist", "build", ".cache", "__pycache__", ".venv"})


# --- Root Context ---

_workspace_root: contextvars.ContextVar[Path | None] = contextvars.ContextVar(
    "workspace_root", default=None
)


def set_workspace_root(root: str | Path | None) -> contextvars.Token:
    """Set the workspace root for tools. Returns a token to reset later."""
    return _workspace_root.set(Path(root).resolve() if root is not None else None)


def get_workspace_root() -> Path:
    """Current workspace root (context override, else AGENTD_WORKSPACE)."""
    root = _workspace_root.get()
    return root if root is not None else WORKSPACE_DIR.resolve()


def reset_workspace_root(token: contextvars.Token) -> None:
    """Reset the workspace root to its previous value."""
    _workspace_root.reset(token)


# --- Path Resolution ---


def resolve_path(raw_path: str | None, must_exist: bool = False) -> Path:
    """
    Resolve a tool-supplied path inside the workspace root.

    Absolute paths are interpreted relative to the root ("/src/a.ts" is
    "<root>/src/a.ts"), matching how the model addresses project files.
    """
    root = get_workspace_root()
    relative = (raw_path or ".").lstrip("/") or "."
    candidate = (root / relative).resolve()

    if candidate != root and root not in candidate.parents:
        raise ValueError(f"Path is outside the workspace: {raw_path}")
    if must_exist and not candidate.exists():
        raise FileNotFoundError(f"No such file or directory: {raw_path}")
    return candidate


def display_path(path: Path) -> str:
    """Workspace-relative path with a leading slash, for tool output."""
    relative = path.relative_to(get_workspace_root()).as_posix()
    return "/" if relative == "." else f"/{relative}"


def is_skipped_dir(name: str) -> bool:
    return name in SKIP_DIRS or name.startswith(".")
