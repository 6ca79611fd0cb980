"""File read, write and edit tools."""

import difflib
from pathlib import Path
from typing import Optional
import aiofiles
from pydantic import Field
from .base import BaseTool, ExecutionContext, ToolInput, ToolResult
from ..core.errors import ToolError

MAX_READ_BYTES = 1_000_000
BINARY_CHECK_BYTES = 8192


async def read_text(path: Path, display: str) -> str:
    """Read a UTF-8 text file exactly, newlines untouched."""
    if not path.exists():
        raise ToolError(f"File not found: {display}")
    if path.is_dir():
        raise ToolError(f"Path is a directory, not a file: {display}")

    async with aiofiles.open(path, "rb") as f:
        raw = await f.read()
    if b"\x00" in raw[:BINARY_CHECK_BYTES]:
        raise ToolError(f"File appears to be binary: {display}")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        raise ToolError(f"File is not valid UTF-8 text: {display}")


async def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(path, "w", encoding="utf-8", newline="") as f:
        await f.write(content)


def unified_diff(old: str, new: str, name: str) -> str:
    return "".join(difflib.unified_diff(
        old.splitlines(keepends=True),
        new.splitlines(keepends=True),
        fromfile=f"a/{name}",
        tofile=f"b/{name}",
    ))


class ReadInput(ToolInput):
    file_path: str = Field(..., min_length=1, description="Path to the file, absolute or relative to the working directory")
    offset: Optional[int] = Field(default=None, ge=1, description="1-based line number to start reading from")
    limit: Optional[int] = Field(default=None, ge=1, description="Number of lines to read")


class ReadTool(BaseTool):
    """Return the contents of a text file, optionally a line window of it."""

    name = "Read"
    input_model = ReadInput

    @property
    def description(self) -> str:
        return (
            "Read a text file. Returns the raw contents; use offset and limit "
            "to read a window of lines from large files."
        )

    async def execute(self, params: ReadInput, context: ExecutionContext) -> ToolResult:
        path = context.resolve(params.file_path)
        display = context.display_path(path)

        if path.is_file() and params.offset is None and params.limit is None:
            size = path.stat().st_size
            if size > MAX_READ_BYTES:
                raise ToolError(
                    f"File too large to read at once: {display} ({size} bytes). Use offset and limit."
                )

        text = await read_text(path, display)
        lines = text.splitlines(keepends=True)

        if params.offset is None and params.limit is None:
            return ToolResult.success(text, path=str(path), total_lines=len(lines), start_line=1)

        start = (params.offset or 1) - 1
        if start >= len(lines) and lines:
            raise ToolError(f"Offset {params.offset} is beyond the end of {display} ({len(lines)} lines)")
        end = start + params.limit if params.limit else len(lines)
        return ToolResult.success(
            "".join(lines[start:end]),
            path=str(path),
            total_lines=len(lines),
            start_line=start + 1,
        )


class WriteInput(ToolInput):
    file_path: str = Field(..., min_length=1, description="Path to the file to create or overwrite")
    content: str = Field(..., description="Full file contents")


class WriteTool(BaseTool):
    """Create or fully overwrite a file."""

    name = "Write"
    input_model = WriteInput
    side_effects = True

    @property
    def description(self) -> str:
        return (
            "Write content to a file, creating parent directories as needed. "
            "Existing files are overwritten completely."
        )

    def get_preview(self, params: WriteInput) -> str:
        lines = params.content.count("\n") + (0 if params.content.endswith("\n") or not params.content else 1)
        return f"Write {lines} lines to {params.file_path}"

    async def execute(self, params: WriteInput, context: ExecutionContext) -> ToolResult:
        path = context.resolve(params.file_path)
        display = context.display_path(path)
        if path.is_dir():
            raise ToolError(f"Path is a directory, not a file: {display}")

        old_content = None
        if path.exists():
            try:
                old_content = await read_text(path, display)
            except ToolError:
                old_content = None

        await write_text(path, params.content)
        size = len(params.content.encode("utf-8"))
        verb = "Updated" if old_content is not None else "Created"
        return ToolResult.success(
            f"{verb} {display} ({size} bytes)",
            path=str(path),
            created=old_content is None,
            diff=unified_diff(old_content, params.content, display) if old_content is not None else None,
        )


class EditInput(ToolInput):
    file_path: str = Field(..., min_length=1, description="Path to the file to edit")
    old_string: str = Field(..., description="Exact text to replace; must be unique unless replace_all is set")
    new_string: str = Field(..., description="Replacement text")
    replace_all: bool = Field(default=False, description="Replace every occurrence")


class EditTool(BaseTool):
    """Exact substring replacement that fails closed on absent or ambiguous targets."""

    name = "Edit"
    input_model = EditInput
    side_effects = True

    @property
    def description(self) -> str:
        return (
            "Edit a file by replacing an exact string. old_string must appear "
            "exactly once unless replace_all is true; include surrounding lines "
            "to make it unique."
        )

    def get_preview(self, params: EditInput) -> str:
        return unified_diff(params.old_string + "\n", params.new_string + "\n", params.file_path) or \
            f"Edit {params.file_path}"

    async def execute(self, params: EditInput, context: ExecutionContext) -> ToolResult:
        if not params.old_string:
            raise ToolError("old_string must not be empty")
        if params.old_string == params.new_string:
            raise ToolError("old_string and new_string are identical; nothing to change")

        path = context.resolve(params.file_path)
        display = context.display_path(path)
        text = await read_text(path, display)

        count = text.count(params.old_string)
        if count == 0:
            raise ToolError(f"Text not found in {display}")
        if count > 1 and not params.replace_all:
            raise ToolError(
                f"Found {count} occurrences of the text in {display}. Provide more context "
                f"to make the match unique, or set replace_all to replace every occurrence."
            )

        if params.replace_all:
            updated = text.replace(params.old_string, params.new_string)
        else:
            updated = text.replace(params.old_string, params.new_string, 1)
        await write_text(path, updated)

        replaced = count if params.replace_all else 1
        return ToolResult.success(
            f"Edited {display} ({replaced} replacement{'s' if replaced != 1 else ''})",
            path=str(path),
            replacements=replaced,
            diff=unified_diff(text, updated, display),
        )
