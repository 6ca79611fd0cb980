"""Base classes for the Jump Code tool catalog."""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Any, Optional, Type
from pydantic import BaseModel, ConfigDict, ValidationError
from ..core.errors import ToolError
from ..llm.base import ToolDefinition

logger = logging.getLogger(__name__)


class ToolResult(BaseModel):
    """Uniform result of a tool execution."""
    is_error: bool = False
    output: str = ""
    data: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, output: str, **data) -> "ToolResult":
        return cls(is_error=False, output=output, data=data or None)

    @classmethod
    def failure(cls, output: str, **data) -> "ToolResult":
        return cls(is_error=True, output=output, data=data or None)


class ExecutionContext(BaseModel):
    """Per-call execution state threaded through every tool."""
    working_directory: Path
    bash_timeout: int = 120
    max_output_bytes: int = 30_000

    def resolve(self, path: str) -> Path:
        """Resolve ``path`` against the working directory unless absolute."""
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = self.working_directory / candidate
        return Path(os.path.normpath(candidate))

    def display_path(self, path: Path) -> str:
        """Path relative to the working directory when it lies beneath it."""
        try:
            return path.relative_to(self.working_directory).as_posix()
        except ValueError:
            return str(path)


class ToolInput(BaseModel):
    """Base for tool input models. Unknown fields are ignored."""
    model_config = ConfigDict(extra="ignore")


class BaseTool(ABC):
    """Abstract base class for all tools."""

    name: str = ""
    input_model: Type[ToolInput] = ToolInput
    side_effects: bool = False

    @property
    @abstractmethod
    def description(self) -> str:
        """Tool description for the model."""
        pass

    @property
    def input_schema(self) -> Dict[str, Any]:
        """JSON schema for tool parameters, derived from the input model."""
        return self.input_model.model_json_schema()

    @abstractmethod
    async def execute(self, params: Any, context: ExecutionContext) -> ToolResult:
        """Execute the tool with validated parameters."""
        pass

    def definition(self) -> ToolDefinition:
        return ToolDefinition(name=self.name, description=self.description, input_schema=self.input_schema)

    def get_preview(self, params: Any) -> str:
        """Get a preview of what this tool will do."""
        return f"{self.name} {params.model_dump(exclude_none=True)}"

    def validate(self, arguments: Dict[str, Any]) -> ToolInput:
        """Validate raw arguments; raises ToolError with a readable message."""
        try:
            return self.input_model.model_validate(arguments or {})
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}" for err in e.errors()
            )
            raise ToolError(f"Invalid input for {self.name}: {problems}") from e

    async def safe_execute(self, params: ToolInput, context: ExecutionContext) -> ToolResult:
        """Execute, converting any failure into an error result."""
        try:
            return await self.execute(params, context)
        except ToolError as e:
            return ToolResult.failure(str(e))
        except OSError as e:
            return ToolResult.failure(f"{self.name} failed: {e.strerror or e}")
        except Exception as e:
            logger.debug("Tool %s raised", self.name, exc_info=True)
            return ToolResult.failure(f"{self.name} failed: {e}")


class ToolRegistry:
    """Registry and executor for the tool catalog."""

    def __init__(self):
        self._tools: Dict[str, BaseTool] = {}
        self._confirmation = None

    def register(self, tool: BaseTool) -> None:
        """Register a tool."""
        self._tools[tool.name] = tool

    def get_tool(self, tool_name: str) -> Optional[BaseTool]:
        """Get a tool by name."""
        return self._tools.get(tool_name)

    def list_tools(self) -> List[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def definitions(self) -> List[ToolDefinition]:
        """Get definitions for all tools, in registration order."""
        return [tool.definition() for tool in self._tools.values()]

    def set_confirmation_policy(self, policy) -> None:
        """Set the policy awaited before side-effectful tools run.

        ``policy`` needs an async ``confirm(tool_name, preview, arguments)``
        returning a bool. Without a policy, tools run unconfirmed.
        """
        self._confirmation = policy

    async def execute(
        self,
        tool_name: str,
        arguments: Dict[str, Any],
        context: ExecutionContext,
        confirm: bool = True,
    ) -> ToolResult:
        """Validate, optionally confirm, then execute a tool by name."""
        tool = self.get_tool(tool_name)
        if not tool:
            return ToolResult.failure(
                f"Unknown tool '{tool_name}'. Available tools: {', '.join(self.list_tools())}"
            )

        try:
            params = tool.validate(arguments)
        except ToolError as e:
            return ToolResult.failure(str(e))

        if confirm and tool.side_effects and self._confirmation is not None:
            try:
                approved = await self._confirmation.confirm(tool_name, tool.get_preview(params), arguments)
            except Exception as e:
                logger.debug("Confirmation for %s failed", tool_name, exc_info=True)
                return ToolResult.failure(f"Not executed: confirmation failed ({e})")
            if not approved:
                return ToolResult.failure("Operation denied by operator")

        logger.debug("Executing %s in %s", tool_name, context.working_directory)
        result = await tool.safe_execute(params, context)
        if result.is_error:
            logger.debug("%s failed: %s", tool_name, result.output[:200])
        return result

    def get_tool_info(self) -> Dict[str, Dict[str, Any]]:
        """Get detailed information about all tools."""
        return {
            name: {
                "description": tool.description,
                "parameters": tool.input_schema,
                "side_effects": tool.side_effects,
            }
            for name, tool in self._tools.items()
        }
