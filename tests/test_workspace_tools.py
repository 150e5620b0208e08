"""
Tests for the built-in workspace tools.

Each tool is called directly through its TOOL object; the `workspace`
fixture points the tools at a temp directory.
"""

from __future__ import annotations

import sys
import time
from pathlib import Path

import pytest

from agentd.tools import CommandRun, FileCreated, FileModified, ToolCategory
from agentd.tools.workspace import WORKSPACE_TOOLS, load_workspace_tools
from agentd.tools.workspace.context import display_path, resolve_path, set_workspace_root, reset_workspace_root
from agentd.tools.workspace.edit_file import TOOL as edit_file
from agentd.tools.workspace.list_directory import TOOL as list_directory
from agentd.tools.workspace.read_file import TOOL as read_file
from agentd.tools.workspace.run_command import TOOL as run_command
from agentd.tools.workspace.search_code import TOOL as search_code
from agentd.tools.workspace.write_file import TOOL as write_file


class TestLoading:
    def test_all_tools_loaded(self) -> None:
        tools = load_workspace_tools()
        assert sorted(tools) == sorted(WORKSPACE_TOOLS)

    def test_categories(self) -> None:
        tools = load_workspace_tools()
        assert tools["read_file"].category is ToolCategory.READ_ONLY
        assert tools["write_file"].category is ToolCategory.FILE_WRITE
        assert tools["edit_file"].category is ToolCategory.FILE_MODIFY
        assert tools["run_command"].category is ToolCategory.COMMAND


class TestPathResolution:
    """Every path stays inside the workspace root."""

    def test_leading_slash_is_root_relative(self, workspace: Path) -> None:
        assert resolve_path("/src/a.py") == workspace / "src" / "a.py"

    def test_escape_rejected(self, workspace: Path) -> None:
        with pytest.raises(ValueError):
            resolve_path("../outside.txt")

    def test_must_exist(self, workspace: Path) -> None:
        with pytest.raises(FileNotFoundError):
            resolve_path("/missing.txt", must_exist=True)

    def test_display_path(self, workspace: Path) -> None:
        assert display_path(workspace) == "/"
        assert display_path(workspace / "a" / "b.txt") == "/a/b.txt"

    def test_context_override(self, workspace: Path, tmp_path: Path) -> None:
        other = tmp_path / "other"
        other.mkdir()
        token = set_workspace_root(other)
        try:
            assert resolve_path("/x") == other.resolve() / "x"
        finally:
            reset_workspace_root(token)
        assert resolve_path("/x") == workspace / "x"


class TestFileTools:
    """read_file / write_file / edit_file."""

    def test_write_creates_then_modifies(self, workspace: Path) -> None:
        first = write_file.execute(path="/src/main.py", content="print('hi')\n")
        second = write_file.execute(path="/src/main.py", content="print('bye')\n")

        assert first.success and second.success
        assert first.effect == FileCreated("/src/main.py")
        assert second.effect == FileModified("/src/main.py")
        assert first.data["created"] is True
        assert (workspace / "src" / "main.py").read_text() == "print('bye')\n"

    def test_write_outside_workspace_fails(self, workspace: Path) -> None:
        result = write_file.execute(path="../../etc/passwd", content="x")
        assert not result.success
        assert "outside the workspace" in result.error

    def test_read_with_line_range(self, workspace: Path) -> None:
        (workspace / "notes.txt").write_text("one\ntwo\nthree\nfour")

        full = read_file.execute(path="/notes.txt")
        sliced = read_file.execute(path="/notes.txt", start_line=2, end_line=3)

        assert full.data["content"] == "one\ntwo\nthree\nfour"
        assert full.data["truncated"] is False
        assert sliced.data["content"] == "two\nthree"
        assert sliced.data["line_count"] == 4
        assert sliced.data["truncated"] is True

    def test_read_missing_file(self, workspace: Path) -> None:
        result = read_file.execute(path="/nope.txt")
        assert not result.success
        assert "Failed to read file" in result.error

    def test_edit_replaces_unique_text(self, workspace: Path) -> None:
        (workspace / "app.py").write_text("DEBUG = True\n")

        result = edit_file.execute(path="/app.py", old_text="True", new_text="False")

        assert result.success
        assert result.effect == FileModified("/app.py")
        assert (workspace / "app.py").read_text() == "DEBUG = False\n"

    def test_edit_rejects_ambiguous_match(self, workspace: Path) -> None:
        (workspace / "app.py").write_text("a = 1\na = 1\n")

        ambiguous = edit_file.execute(path="/app.py", old_text="a = 1", new_text="a = 2")
        everywhere = edit_file.execute(path="/app.py", old_text="a = 1", new_text="a = 2", replace_all=True)

        assert not ambiguous.success
        assert "2 times" in ambiguous.error
        assert everywhere.data["replacements"] == 2

    def test_edit_missing_text(self, workspace: Path) -> None:
        (workspace / "app.py").write_text("x = 1\n")
        result = edit_file.execute(path="/app.py", old_text="y", new_text="z")
        assert not result.success
        assert "not found" in result.error


class TestListAndSearch:
    """list_directory / search_code."""

    @pytest.fixture
    def project(self, workspace: Path) -> Path:
        (workspace / "src").mkdir()
        (workspace / "src" / "app.ts").write_text("export const answer = 42;\n")
        (workspace / "src" / "util.py").write_text("def answer():\n    return 42\n")
        (workspace / "node_modules" / "lib").mkdir(parents=True)
        (workspace / "node_modules" / "lib" / "index.js").write_text("const answer = 0;\n")
        (workspace / "README.md").write_text("# answer\n")
        return workspace

    def test_list_top_level(self, project: Path) -> None:
        result = list_directory.execute(path="/")
        names = [e["name"] for e in result.data["entries"]]
        assert names == ["/README.md", "/node_modules", "/src"]

    def test_list_recursive_skips_dependencies(self, project: Path) -> None:
        result = list_directory.execute(path="/", recursive=True)
        names = [e["name"] for e in result.data["entries"]]
        assert "/src/app.ts" in names
        assert "/node_modules" in names
        assert not any(n.startswith("/node_modules/") for n in names)

    def test_list_file_fails(self, project: Path) -> None:
        assert not list_directory.execute(path="/README.md").success

    def test_search_skips_dependency_dirs(self, project: Path) -> None:
        result = search_code.execute(query="answer")
        files = [r["file"] for r in result.data["results"]]
        assert files == ["/README.md", "/src/app.ts", "/src/util.py"]

    def test_search_include_pattern(self, project: Path) -> None:
        result = search_code.execute(query="answer", include_pattern=r"\.py$")
        assert [r["file"] for r in result.data["results"]] == ["/src/util.py"]
        assert result.data["results"][0]["line"] == 1

    def test_search_max_results(self, project: Path) -> None:
        result = search_code.execute(query="answer", max_results=1)
        assert result.data["match_count"] == 1
        assert result.data["truncated"] is True

    def test_search_empty_query(self, project: Path) -> None:
        assert not search_code.execute(query="").success


class TestRunCommand:
    """run_command is async and declares CommandRun."""

    @pytest.mark.asyncio
    async def test_runs_in_workspace(self, workspace: Path) -> None:
        result = await run_command.execute(command=f'"{sys.executable}" -c "import os; print(os.getcwd())"')

        assert result.success
        assert result.effect == CommandRun(f'"{sys.executable}" -c "import os; print(os.getcwd())"')
        assert Path(result.data["stdout"].strip()).resolve() == workspace
        assert result.data["exit_code"] == 0

    @pytest.mark.asyncio
    async def test_nonzero_exit_still_succeeds(self, workspace: Path) -> None:
        result = await run_command.execute(command=f'"{sys.executable}" -c "import sys; sys.exit(3)"')
        assert result.success
        assert result.data["exit_code"] == 3

    @pytest.mark.asyncio
    async def test_timeout(self, workspace: Path) -> None:
        result = await run_command.execute(
            command=f'"{sys.executable}" -c "import time; time.sleep(3)"',
            timeout=1,
        )
        assert not result.success
        assert result.data["timed_out"] is True
        assert "timed out" in result.error

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
    async def test_timeout_kills_child_processes(self, workspace: Path) -> None:
        started = time.monotonic()
        result = await run_command.execute(command="sleep 5; echo finished", timeout=1)
        elapsed = time.monotonic() - started

        assert result.data["timed_out"] is True
        assert "finished" not in result.data["stdout"]
        assert elapsed < 4
