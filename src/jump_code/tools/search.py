"""File name and content search tools."""

import asyncio
import fnmatch
import os
import re
from pathlib import Path
from typing import Iterator, List, Optional, Tuple
from pydantic import Field
from .base import BaseTool, ExecutionContext, ToolInput, ToolResult
from ..core.errors import ToolError

EXCLUDED_DIRS = frozenset({
    ".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv",
    ".tox", ".mypy_cache", ".pytest_cache", "dist", "build", ".next",
})
MAX_GLOB_RESULTS = 100
MAX_GREP_MATCHES = 100
MAX_LINE_LENGTH = 500
BINARY_CHECK_BYTES = 8192


def walk_files(root: Path) -> Iterator[Path]:
    """Yield files under ``root`` in sorted order, pruning excluded directories."""
    for dirpath, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if d not in EXCLUDED_DIRS)
        for filename in sorted(files):
            yield Path(dirpath) / filename


def in_excluded_dir(path: Path, base: Path) -> bool:
    """Whether ``path`` lies inside an excluded directory below ``base``."""
    try:
        parts = path.relative_to(base).parts
    except ValueError:
        return False
    return any(part in EXCLUDED_DIRS for part in parts)


def _match_parts(parts: List[str], pattern_parts: List[str]) -> bool:
    if not pattern_parts:
        return not parts
    head, rest = pattern_parts[0], pattern_parts[1:]
    if head == "**":
        return any(_match_parts(parts[i:], rest) for i in range(len(parts) + 1))
    return bool(parts) and fnmatch.fnmatchcase(parts[0], head) and _match_parts(parts[1:], rest)


def match_glob(relative: str, pattern: str) -> bool:
    """Match a relative posix path component by component.

    Patterns without ``/`` match the file name at any depth; a ``**``
    component matches any number of directories.
    """
    if "/" not in pattern:
        return fnmatch.fnmatchcase(relative.rsplit("/", 1)[-1], pattern)
    return _match_parts(relative.split("/"), [p for p in pattern.split("/") if p])


def is_binary(path: Path) -> bool:
    try:
        with open(path, "rb") as f:
            return b"\x00" in f.read(BINARY_CHECK_BYTES)
    except OSError:
        return True


class GlobInput(ToolInput):
    pattern: str = Field(..., min_length=1, description="Glob pattern, e.g. '*.py' or 'src/**/*.ts'")
    path: Optional[str] = Field(default=None, description="Directory to search (defaults to the working directory)")


class GlobTool(BaseTool):
    """Find files by name pattern."""

    name = "Glob"
    input_model = GlobInput

    @property
    def description(self) -> str:
        return (
            "Find files matching a glob pattern. Patterns without '/' match file "
            "names at any depth; use '**' to match across directories. "
            "VCS, dependency and build directories are skipped."
        )

    def _search(self, root: Path, pattern: str) -> List[Path]:
        return [p for p in walk_files(root) if match_glob(p.relative_to(root).as_posix(), pattern)]

    async def execute(self, params: GlobInput, context: ExecutionContext) -> ToolResult:
        root = context.resolve(params.path or ".")
        if not root.is_dir():
            raise ToolError(f"Not a directory: {params.path or root}")
        if in_excluded_dir(root, context.working_directory):
            return ToolResult.success("No files matched the pattern.", count=0)

        pattern = params.pattern[2:] if params.pattern.startswith("./") else params.pattern
        loop = asyncio.get_running_loop()
        matches = await loop.run_in_executor(None, self._search, root, pattern)

        if not matches:
            return ToolResult.success("No files matched the pattern.", count=0)

        truncated = len(matches) > MAX_GLOB_RESULTS
        shown = [context.display_path(p) for p in matches[:MAX_GLOB_RESULTS]]
        output = "\n".join(shown)
        if truncated:
            output += f"\n(Showing first {MAX_GLOB_RESULTS} of {len(matches)} files. Use a more specific pattern.)"
        return ToolResult.success(output, count=len(matches), truncated=truncated, files=shown)


class GrepInput(ToolInput):
    pattern: str = Field(..., min_length=1, description="Regular expression to search for")
    path: Optional[str] = Field(default=None, description="File or directory to search (defaults to the working directory)")
    include: Optional[str] = Field(default=None, description="File name filter, e.g. '*.py'")


class GrepTool(BaseTool):
    """Regex search over file contents."""

    name = "Grep"
    input_model = GrepInput

    @property
    def description(self) -> str:
        return (
            "Search file contents with a regular expression. Returns matching "
            "lines as path:line:text. Binary files and VCS, dependency and build "
            "directories are skipped."
        )

    def _search(self, root: Path, regex: "re.Pattern[str]", include: Optional[str]) -> List[Tuple[Path, int, str]]:
        files = [root] if root.is_file() else walk_files(root)
        matches = []
        for path in files:
            if include and not fnmatch.fnmatch(path.name, include):
                continue
            if is_binary(path):
                continue
            try:
                text = path.read_text(encoding="utf-8")
            except (UnicodeDecodeError, OSError):
                continue
            for line_no, line in enumerate(text.splitlines(), start=1):
                if regex.search(line):
                    matches.append((path, line_no, line))
                    # One past the cap is enough to know the output is truncated
                    if len(matches) > MAX_GREP_MATCHES:
                        return matches
        return matches

    async def execute(self, params: GrepInput, context: ExecutionContext) -> ToolResult:
        try:
            regex = re.compile(params.pattern)
        except re.error as e:
            raise ToolError(f"Invalid regular expression {params.pattern!r}: {e}")

        root = context.resolve(params.path or ".")
        if not root.exists():
            raise ToolError(f"Path does not exist: {params.path or root}")

        loop = asyncio.get_running_loop()
        matches = await loop.run_in_executor(None, self._search, root, regex, params.include)

        if not matches:
            return ToolResult.success("No matches found.", count=0)

        truncated = len(matches) > MAX_GREP_MATCHES
        lines = []
        for path, line_no, line in matches[:MAX_GREP_MATCHES]:
            if len(line) > MAX_LINE_LENGTH:
                line = line[:MAX_LINE_LENGTH] + "..."
            lines.append(f"{context.display_path(path)}:{line_no}:{line}")
        output = "\n".join(lines)
        if truncated:
            output += f"\n(Showing first {MAX_GREP_MATCHES} matches. Use a more specific pattern or path.)"
        return ToolResult.success(output, count=len(lines), truncated=truncated)
