"""Main terminal interface for Jump Code."""

import asyncio
import logging
import signal
from typing import Optional
from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.completion import WordCompleter
from .commands import CommandDispatcher
from .display import DisplayManager, display as default_display
from ..core.agent import AgentState
from ..core.errors import IterationLimitError, QuotaError, TransportError, UserExit
from ..llm.base import ImageBlock
from ..utils.config import ConfigManager, config_manager as default_config_manager

logger = logging.getLogger(__name__)

PROMPT = "> "


class TerminalInterface:
    """Interactive read loop around a CodingAgent."""

    def __init__(self, agent, display: Optional[DisplayManager] = None,
                 config_manager: Optional[ConfigManager] = None):
        self.agent = agent
        self.display = display or default_display
        self.config_manager = config_manager or default_config_manager
        self.dispatcher = CommandDispatcher(
            agent,
            display=self.display,
            config_manager=self.config_manager,
            converse=self.process_input,
            on_clear=self._show_welcome,
        )
        self.session = PromptSession(
            history=InMemoryHistory(),
            auto_suggest=AutoSuggestFromHistory(),
            complete_style="column"
        )
        self.completer = WordCompleter(self.dispatcher.command_names(), ignore_case=True, sentence=True)
        self.running = False
        self._wire_agent()

    def _wire_agent(self) -> None:
        agent = self.agent
        agent.on_tool_call = lambda block: self.display.print_tool_call(block.name, block.input)
        agent.on_tool_result = lambda block, result: self.display.print_tool_result(
            block.name, result.output, result.is_error, result.data
        )
        agent.on_action_result = lambda line, result: self.display.print_action_result(
            line, result.success, result.error or ""
        )
        agent.on_state_change = self._on_state_change

    def _on_state_change(self, state: AgentState) -> None:
        if state == AgentState.AWAITING_MODEL:
            self.display.start_status("Thinking...")
        else:
            self.display.stop_status()

    async def start(self) -> None:
        """Run the read loop until /exit, /quit or end of input."""
        self.running = True
        self._show_welcome()

        try:
            while self.running:
                await self._interaction_loop()
        finally:
            self.display.stop_status()
            self.agent.save()
            self.display.print("Goodbye!", style="cyan")

    def _show_welcome(self) -> None:
        """Show welcome message."""
        agent = self.agent
        welcome_text = (
            f"[bold]Jump Code[/bold] v{agent.config.version}\n\n"
            "Your coding assistant in the terminal. Ask for anything,\n"
            "or type /help for commands."
        )
        self.display.print_panel(
            welcome_text,
            title="Welcome",
            style="bold cyan",
            border_style="cyan"
        )

        self.display.print(f"Working directory: {agent.working_directory}", style="dim", highlight=False)
        self.display.print(f"Model: {agent.llm.model} ({agent.config.llm.provider})", style="dim", highlight=False)
        context = agent.project_context
        if context is not None and context.summary():
            self.display.print(context.summary(), style="dim", highlight=False)
        if agent.history:
            self.display.print(f"Resumed conversation with {len(agent.history)} turns. /forget starts fresh.", style="dim")
        self.display.print_separator()

    async def _interaction_loop(self) -> None:
        try:
            user_input = await self._get_user_input()
        except EOFError:
            self.running = False
            return
        except KeyboardInterrupt:
            self.display.print("Use /exit to quit", style="yellow")
            return

        if not user_input.strip():
            return

        if self.dispatcher.is_command(user_input):
            try:
                await self.dispatcher.dispatch(user_input)
            except UserExit:
                self.running = False
            return

        await self.process_input(user_input)

    async def _get_user_input(self) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: self.session.prompt(PROMPT, completer=self.completer)
        )

    async def process_input(self, text: str, image: Optional[ImageBlock] = None) -> Optional[str]:
        """Send one request to the agent, rendering output as it arrives.

        Ctrl+C while the agent works cancels the request without leaving
        the read loop.
        """
        self.display.print_separator()
        streaming = self.agent.config.streaming
        task = asyncio.ensure_future(
            self.agent.converse(text, on_text=self.display.print_streaming_response if streaming else None,
                                image=image)
        )

        loop = asyncio.get_running_loop()
        handler_installed = False
        try:
            loop.add_signal_handler(signal.SIGINT, task.cancel)
            handler_installed = True
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handlers; KeyboardInterrupt is caught below
            pass

        response = None
        try:
            response = await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            self.display.stop_status()
            self.display.end_stream()
            self.display.print("Interrupted.", style="yellow")
        except KeyboardInterrupt:
            task.cancel()
            self.display.stop_status()
            self.display.end_stream()
            self.display.print("Interrupted.", style="yellow")
        except QuotaError as e:
            self._show_transport_error(e, "Quota exceeded")
        except TransportError as e:
            self._show_transport_error(e, "Could not reach the model")
        except IterationLimitError as e:
            self.display.stop_status()
            self.display.end_stream()
            self.display.print_warning(str(e), "Ask again to let Jump Code continue from here.")
        finally:
            if handler_installed:
                loop.remove_signal_handler(signal.SIGINT)

        if response is not None:
            self.display.stop_status()
            if streaming:
                self.display.end_stream()
            else:
                self.display.print_response(response)
            if self.agent.config.show_token_usage:
                self.display.print_usage(self.agent.usage.input_tokens, self.agent.usage.output_tokens)
        self.display.print_separator()
        return response

    def _show_transport_error(self, error: TransportError, title: str) -> None:
        self.display.stop_status()
        self.display.end_stream()
        logger.debug("Transport failure", exc_info=error)
        self.display.print_error(
            f"{title}: {error}",
            "Your message was kept. Check your connection and credentials, then try again."
        )
