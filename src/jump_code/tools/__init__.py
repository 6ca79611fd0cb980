"""Tool catalog and executor for Jump Code."""

from .base import BaseTool, ExecutionContext, ToolResult, ToolRegistry
from .shell import BashTool
from .filesystem import ReadTool, WriteTool, EditTool
from .search import GlobTool, GrepTool


def build_registry() -> ToolRegistry:
    """Registry holding the fixed catalog: Bash, Read, Write, Edit, Glob, Grep."""
    registry = ToolRegistry()
    for tool in (BashTool(), ReadTool(), WriteTool(), EditTool(), GlobTool(), GrepTool()):
        registry.register(tool)
    return registry


__all__ = [
    "BaseTool",
    "ExecutionContext",
    "ToolResult",
    "ToolRegistry",
    "BashTool",
    "ReadTool",
    "WriteTool",
    "EditTool",
    "GlobTool",
    "GrepTool",
    "build_registry",
]
