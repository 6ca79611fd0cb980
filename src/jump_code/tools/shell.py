"""Shell command execution tool."""

import asyncio
import os
import signal
import sys
from typing import Optional, Tuple
from pydantic import Field
from .base import BaseTool, ExecutionContext, ToolInput, ToolResult
from ..core.errors import ToolError

MAX_TIMEOUT = 600
TRUNCATION_MARKER = "\n... [output truncated]"
READ_CHUNK = 64 * 1024


class BashInput(ToolInput):
    command: str = Field(..., min_length=1, description="The command to execute")
    timeout: Optional[int] = Field(
        default=None, ge=1, le=MAX_TIMEOUT, description="Timeout in seconds (default 120, max 600)"
    )


async def read_capped(stream: asyncio.StreamReader, limit: int) -> Tuple[bytes, bool]:
    """Read ``stream`` to EOF, keeping at most ``limit`` bytes."""
    chunks = []
    size = 0
    truncated = False
    while True:
        chunk = await stream.read(READ_CHUNK)
        if not chunk:
            break
        if size < limit:
            keep = chunk[:limit - size]
            chunks.append(keep)
            size += len(keep)
            if len(keep) < len(chunk):
                truncated = True
        else:
            truncated = True
    return b"".join(chunks), truncated


async def kill_process(process: asyncio.subprocess.Process) -> None:
    """Kill ``process`` and its process group, then reap it."""
    if process.returncode is None:
        if sys.platform != "win32":
            try:
                os.killpg(process.pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                pass  # already exited
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


class BashTool(BaseTool):
    """Run a shell command in the working directory."""

    name = "Bash"
    input_model = BashInput
    side_effects = True

    @property
    def description(self) -> str:
        return (
            "Execute a shell command in the project working directory. "
            "Combined stdout/stderr is returned along with the exit code. "
            "Commands are killed when the timeout expires."
        )

    def get_preview(self, params: BashInput) -> str:
        return f"$ {params.command}"

    async def execute(self, params: BashInput, context: ExecutionContext) -> ToolResult:
        cwd = context.working_directory
        if not cwd.is_dir():
            raise ToolError(f"Working directory does not exist: {cwd}")

        timeout = params.timeout or context.bash_timeout
        process = await asyncio.create_subprocess_shell(
            params.command,
            cwd=str(cwd),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=sys.platform != "win32",
        )

        async def collect() -> Tuple[bytes, bool]:
            captured = await read_capped(process.stdout, context.max_output_bytes)
            await process.wait()
            return captured

        try:
            raw, truncated = await asyncio.wait_for(collect(), timeout=timeout)
        except asyncio.TimeoutError:
            await kill_process(process)
            return ToolResult.failure(
                f"Command timed out after {timeout} seconds and was terminated",
                command=params.command,
                timed_out=True,
            )
        except asyncio.CancelledError:
            await kill_process(process)
            raise

        output = raw.decode("utf-8", errors="replace")
        if truncated:
            output += TRUNCATION_MARKER
        exit_code = process.returncode

        if exit_code != 0:
            return ToolResult.failure(
                f"{output}\nExit code: {exit_code}" if output else f"Exit code: {exit_code}",
                command=params.command,
                exit_code=exit_code,
                truncated=truncated,
            )
        return ToolResult.success(
            output or "(no output)",
            command=params.command,
            exit_code=exit_code,
            truncated=truncated,
        )
