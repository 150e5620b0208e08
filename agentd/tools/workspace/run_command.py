"""
Run command tool.

Executes a shell command in the workspace with timeout protection.
"""

import asyncio
import logging
import os
import signal

from ..base import CommandRun, ToolCategory, ToolResult, tool
from .context import resolve_path

logger = logging.getLogger("agentd.tools.workspace")

MAX_OUTPUT_CHARS = 20000

# Grace period for collecting output after the process group is killed
DRAIN_TIMEOUT = 5


def _clip(text: str) -> str:
    if len(text) > MAX_OUTPUT_CHARS:
        return text[:MAX_OUTPUT_CHARS] + "\n... (output truncated)"
    return text


def _kill_group(process: asyncio.subprocess.Process) -> None:
    """Kill the shell and everything it started."""
    try:
        if hasattr(os, "killpg"):
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass


@tool(
    name="run_command",
    description="Run a shell command in the project directory (e.g. 'npm install', 'npm run build', 'ls -la'). Returns exit code, stdout and stderr. Long-running servers should not be started with this tool.",
    parameters={
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The shell command to execute",
            },
            "cwd": {
                "type": "string",
                "description": "Working directory relative to the project root (optional)",
            },
            "timeout": {
                "type": "integer",
                "description": "Max execution time in seconds (default 30)",
            },
        },
        "required": ["command"],
    },
    category=ToolCategory.COMMAND,
)
async def run_command(command: str, cwd: str | None = None, timeout: int = 30) -> ToolResult:
    """Execute a command and return its output."""
    try:
        workdir = resolve_path(cwd, must_exist=True)
    except (OSError, ValueError) as e:
        return ToolResult.fail(f"Failed to execute command: {e}")

    logger.info(f"Executing command: {command} (cwd={workdir})")
    try:
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=str(workdir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as e:
        logger.error(f"Failed to execute command: {command}: {e}")
        return ToolResult.fail(f"Failed to execute command: {e}")

    timed_out = False
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        timed_out = True
        _kill_group(process)
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=DRAIN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"Output of timed out command not drained: {command}")
            stdout, stderr = b"", b""

    exit_code = process.returncode if process.returncode is not None else -1
    logger.debug(f"Command completed with exit code {exit_code}")

    data = {
        "command": command,
        "exit_code": exit_code,
        "stdout": _clip(stdout.decode("utf-8", errors="replace")),
        "stderr": _clip(stderr.decode("utf-8", errors="replace")),
        "timed_out": timed_out,
    }
    if timed_out:
        return ToolResult(
            success=False,
            data=data,
            error=f"Command timed out after {timeout}s",
            effect=CommandRun(command),
        )
    return ToolResult.ok(data, effect=CommandRun(command))


TOOL = run_command
