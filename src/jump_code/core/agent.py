"""Conversation manager: the tool-use loop between the operator, the model and the tools."""

import asyncio
import logging
import platform
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from .context import ProjectContext, ProjectContextAnalyzer
from .errors import IterationLimitError, TransportError
from .references import load_file_references
from ..automation import (
    ActionResult,
    AutomationBackend,
    detect_backend,
    execute_action,
    parse_action_blocks,
    should_capture_screen,
)
from ..llm.base import (
    ImageBlock,
    ModelResponse,
    Role,
    StreamComplete,
    TextDelta,
    ToolResultBlock,
    ToolUseBlock,
    Turn,
    Usage,
)
from ..llm.manager import LLMManager
from ..memory.session import Session, SessionStore
from ..tools import ExecutionContext, ToolRegistry, ToolResult, build_registry
from ..utils.config import AgentConfig, config_manager

logger = logging.getLogger(__name__)

ITERATION_LIMIT_RESULT = "Not executed: the iteration limit was reached"
CANCELLED_RESULT = "Not executed: cancelled by operator"


class AgentState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    TOOL_USE = "tool_use"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    ERROR = "error"


SYSTEM_PROMPT = """You are Jump Code, a coding assistant that works directly in the operator's terminal.

## Tools
- Bash: run shell commands in the working directory
- Read: read a file, optionally a window of lines
- Write: create or overwrite a file
- Edit: replace an exact, unique piece of text in a file
- Glob: find files by pattern
- Grep: search file contents with a regular expression

Read a file before editing it. Prefer Edit over rewriting whole files. Paths are
relative to the working directory unless absolute.

## Guidelines
1. Explain briefly what you are about to do, then do it
2. Keep changes focused on the request
3. Run tests or the relevant command when you can to check your work
4. When a tool fails, read the error and adapt instead of repeating the call
5. Be concise; use Markdown for code and lists"""

COMPUTER_CONTROL_PROMPT = """

## Computer control
A screen capture is attached when the operator asks about the screen. To act on
the desktop, put one action per line in an ```action block at the end of your
answer. The operator confirms actions before they run. Supported actions:
screenshot, click X Y, doubleclick X Y, rightclick X Y, move X Y, drag X1 Y1 X2 Y2,
scroll [N] [up|down|left|right], type "text", key ctrl+s, enter, tab, escape,
copy, paste, focus WINDOW, windows, clipboard get, clipboard set TEXT"""


class CodingAgent:
    """Runs one operator request at a time through the tool-use loop.

    Every tool-use request from the model is answered with exactly one tool
    result, in request order, before the model is called again.
    """

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        working_directory: Optional[Union[str, Path]] = None,
        llm: Optional[LLMManager] = None,
        registry: Optional[ToolRegistry] = None,
        automation: Optional[AutomationBackend] = None,
        store: Optional[SessionStore] = None,
        confirmation=None,
    ):
        self.config = config or config_manager.config
        self.working_directory = Path(working_directory or Path.cwd()).resolve()
        self.llm = llm or LLMManager(self.config.llm)
        self.registry = registry or build_registry()
        self.automation = automation
        self.store = store or SessionStore(config_manager.memory_dir, self.config.max_history_turns)
        self.confirmation = confirmation
        if self.config.confirm_actions and confirmation is not None:
            self.registry.set_confirmation_policy(confirmation)

        self.session: Session = self.store.load(self.working_directory, self.config.llm.model)
        self.state = AgentState.IDLE
        self.usage = Usage()
        self.project_context: Optional[ProjectContext] = None
        self.system_prompt = ""
        self.last_actions: List[Tuple[str, ActionResult]] = []

        # Presentation hooks
        self.on_state_change: Optional[Callable[[AgentState], None]] = None
        self.on_tool_call: Optional[Callable[[ToolUseBlock], None]] = None
        self.on_tool_result: Optional[Callable[[ToolUseBlock, ToolResult], None]] = None
        self.on_action_result: Optional[Callable[[str, ActionResult], None]] = None

        self._initialized = False

    async def initialize(self) -> None:
        """Connect the model client and gather project context."""
        if self._initialized:
            return

        await self.llm.initialize()
        if self.automation is None:
            self.automation = detect_backend()
        self.project_context = ProjectContextAnalyzer(self.working_directory).analyze()
        self.system_prompt = self._create_system_prompt()
        self._initialized = True

    def _create_system_prompt(self) -> str:
        lines = [
            SYSTEM_PROMPT,
            "",
            "## Environment",
            f"- Working directory: {self.working_directory}",
            f"- Platform: {platform.system() or 'unknown'}",
        ]
        summary = self.project_context.summary() if self.project_context else ""
        if summary:
            lines.append(f"- Project: {summary}")
        prompt = "\n".join(lines)
        if self.config.computer_control_enabled:
            prompt += COMPUTER_CONTROL_PROMPT
        return prompt

    @property
    def history(self) -> List[Turn]:
        return self.session.history

    def execution_context(self) -> ExecutionContext:
        return ExecutionContext(
            working_directory=self.working_directory,
            bash_timeout=self.config.bash_timeout,
            max_output_bytes=self.config.max_output_bytes,
        )

    def _set_state(self, state: AgentState) -> None:
        if state != self.state:
            logger.debug("Agent state %s -> %s", self.state.value, state.value)
        self.state = state
        if self.on_state_change:
            self.on_state_change(state)

    async def converse(self, operator_text: str, on_text: Optional[Callable[[str], None]] = None,
                       image: Optional[ImageBlock] = None) -> str:
        """Process one operator request and return the model's final text.

        ``image`` is attached to the operator turn as given; without one a
        capture is taken when auto_screenshot applies to the request. Files
        named in the request are attached after its text.

        Raises TransportError (including QuotaError) when the model endpoint
        fails and IterationLimitError when the model keeps requesting tools.
        The operator turn is kept in the session in both cases.
        """
        await self.initialize()

        if (image is None and self.config.computer_control_enabled and self.config.auto_screenshot
                and should_capture_screen(operator_text)):
            image = await self.capture_screen()
        turn = Turn.operator(operator_text, image)
        if self.config.inline_file_references:
            # Referenced files go between the request text and any image
            turn.content[1:1] = await load_file_references(operator_text, self.execution_context())
        self.session.append(turn)

        try:
            final_text = await self._run_loop(on_text)
        except (TransportError, IterationLimitError):
            self._set_state(AgentState.ERROR)
            self.save()
            raise
        except asyncio.CancelledError:
            self._set_state(AgentState.ERROR)
            self.save()
            raise

        self._set_state(AgentState.DONE)
        self.save()

        self.last_actions = []
        if self.config.computer_control_enabled:
            await self._run_action_blocks(final_text)
        return final_text

    async def _run_loop(self, on_text: Optional[Callable[[str], None]]) -> str:
        max_iterations = self.config.max_iterations
        for iteration in range(1, max_iterations + 1):
            self._set_state(AgentState.AWAITING_MODEL)
            response = await self._call_model(on_text)
            self.usage.input_tokens += response.usage.input_tokens
            self.usage.output_tokens += response.usage.output_tokens

            turn = response.to_turn()
            self.session.append(turn)
            tool_uses = turn.tool_uses
            if not tool_uses:
                return response.text

            self._set_state(AgentState.TOOL_USE)
            if iteration == max_iterations:
                self.session.append(self._unexecuted_results(tool_uses, ITERATION_LIMIT_RESULT))
                raise IterationLimitError(max_iterations)

            self._set_state(AgentState.EXECUTING_TOOLS)
            await self._execute_tools(tool_uses)

        # Only reachable with max_iterations < 1
        raise IterationLimitError(max_iterations)

    async def _call_model(self, on_text: Optional[Callable[[str], None]]) -> ModelResponse:
        tools = self.registry.definitions()
        if not self.config.streaming:
            return await self.llm.send(self.session.history, self.system_prompt, tools)

        response = None
        async for event in self.llm.stream(self.session.history, self.system_prompt, tools):
            if isinstance(event, TextDelta):
                if on_text:
                    on_text(event.text)
            elif isinstance(event, StreamComplete):
                response = event.response
        if response is None:
            raise TransportError("The response stream ended before completing")
        return response

    async def _execute_tools(self, tool_uses: List[ToolUseBlock]) -> None:
        """Run each request in order and append one operator turn of results."""
        context = self.execution_context()
        results: List[ToolResultBlock] = []
        try:
            for block in tool_uses:
                try:
                    if self.on_tool_call:
                        self.on_tool_call(block)
                    result = await self.registry.execute(block.name, block.input, context)
                    if self.on_tool_result:
                        self.on_tool_result(block, result)
                except Exception as e:
                    # The request still needs its result
                    logger.debug("Tool request %s failed", block.name, exc_info=True)
                    result = ToolResult.failure(f"{block.name} failed: {e}")
                results.append(ToolResultBlock(tool_use_id=block.id, output=result.output, is_error=result.is_error))
        except asyncio.CancelledError:
            remaining = tool_uses[len(results):]
            results += self._unexecuted_results(remaining, CANCELLED_RESULT).tool_results
            self.session.append(Turn(role=Role.OPERATOR, content=results))
            raise
        self.session.append(Turn(role=Role.OPERATOR, content=results))

    @staticmethod
    def _unexecuted_results(tool_uses: List[ToolUseBlock], reason: str) -> Turn:
        return Turn(
            role=Role.OPERATOR,
            content=[ToolResultBlock(tool_use_id=b.id, output=reason, is_error=True) for b in tool_uses],
        )

    async def capture_screen(self) -> Optional[ImageBlock]:
        """Capture the screen for the next operator turn; None when unavailable."""
        backend = self.automation or detect_backend()
        result = await backend.screenshot()
        if not result.success:
            logger.debug(f"Screen capture skipped: {result.error}")
            return None
        return ImageBlock(media_type=result.data.get("media_type", "image/png"), data=result.data["base64"])

    async def _run_action_blocks(self, text: str) -> None:
        lines = parse_action_blocks(text)
        if not lines:
            return
        if self.config.confirm_actions and self.confirmation is not None:
            approved = await self.confirmation.confirm("Action", "\n".join(lines), {"actions": lines})
            if not approved:
                logger.info("Desktop actions declined by operator")
                return
        for line in lines:
            result = await execute_action(self.automation, line)
            self.last_actions.append((line, result))
            if self.on_action_result:
                self.on_action_result(line, result)

    def save(self) -> None:
        """Persist the session if history saving is enabled."""
        if not self.config.auto_save_history:
            return
        try:
            self.store.save(self.session)
        except OSError as e:
            logger.warning(f"Could not save conversation memory: {e}")

    def apply_config(self, config: AgentConfig) -> None:
        """Adopt settings changed while running (/config, /model)."""
        self.config = config
        self.llm.set_config(config.llm)
        self.store.max_turns = config.max_history_turns
        self.registry.set_confirmation_policy(self.confirmation if config.confirm_actions else None)
        if self._initialized:
            self.system_prompt = self._create_system_prompt()

    def set_model(self, model: str) -> None:
        self.llm.set_model(model)
        self.session.selected_model = model

    def reset(self) -> None:
        """Clear the conversation; the memory file is left on disk."""
        self.session.clear()
        self.usage = Usage()
        self._set_state(AgentState.IDLE)

    def forget(self) -> bool:
        """Clear the conversation and delete this directory's memory file."""
        self.reset()
        return self.store.forget(self.working_directory)

    def get_status(self) -> Dict[str, Any]:
        """Snapshot for /about and the status command."""
        capability = self.automation.capability.model_dump() if self.automation else {}
        return {
            "state": self.state.value,
            "working_directory": str(self.working_directory),
            "turns": len(self.session.history),
            "provider": self.llm.get_provider_info(),
            "usage": {
                "input_tokens": self.usage.input_tokens,
                "output_tokens": self.usage.output_tokens,
                "total_tokens": self.usage.total_tokens,
            },
            "tools": self.registry.list_tools(),
            "automation": capability,
            "memory_file": str(self.store.path_for(self.working_directory)),
        }
