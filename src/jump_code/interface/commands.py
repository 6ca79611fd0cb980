"""Slash commands: /help, /read, /edit, /run, /screen and friends."""

import logging
import re
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional
import click
from rich.markup import escape
from .display import DisplayManager, display as default_display
from ..automation import ActionResult, AutomationBackend, detect_backend
from ..automation.actions import parse_key_combo
from ..core.errors import ConfigurationError, UserExit
from ..llm.base import ImageBlock, Role, Turn
from ..tools.search import EXCLUDED_DIRS
from ..utils.config import ConfigManager, config_manager as default_config_manager

logger = logging.getLogger(__name__)

COMMAND_PREFIX = "/"
SEARCH_DISPLAY_LIMIT = 50
TREE_DEPTH = 3
HISTORY_TURNS = 20
HISTORY_PREVIEW_CHARS = 100

MODEL_CHOICES: Dict[str, List[str]] = {
    "openai": ["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo"],
    "anthropic": ["claude-sonnet-4-20250514", "claude-opus-4-20250514", "claude-3-5-haiku-20241022"],
    "gateway": ["sonnet", "opus", "haiku"],
}

EDIT_CHOICES = {
    "d": "Describe changes (Jump Code edits the file)",
    "r": "Replace entire content",
    "a": "Append content",
    "c": "Cancel",
}

HELP = {
    "/help": "Show this help",
    "/read <file>": "Show a file with line numbers",
    "/edit <file>": "Edit a file yourself or describe the change",
    "/write <file>": "Write a file from your editor",
    "/search <text>": "Search file contents",
    "/tree": "Show the project structure",
    "/run <command>": "Run a shell command (alias /bash)",
    "/git [args]": "Run git (default: git status)",
    "/screen": "Capture the screen (alias /screenshot)",
    "/click <x> <y>": "Click at a position",
    "/type <text>": "Type text",
    "/key <combo>": "Press a key or combination, e.g. ctrl+s",
    "/move <x> <y>": "Move the pointer",
    "/scroll [n] [dir]": "Scroll up, down, left or right",
    "/windows": "List open windows",
    "/clipboard [get|set <text>]": "Read or set the clipboard",
    "/clear": "Clear the screen and the conversation",
    "/forget": "Clear the conversation and delete its memory file",
    "/config [key value]": "Show or change configuration",
    "/model [name]": "Show or change the model",
    "/history": "Show recent conversation turns",
    "/context": "Show the detected project context",
    "/about": "About Jump Code",
    "/exit": "Exit (alias /quit)",
}

ABOUT = """[bold cyan]Jump Code[/bold cyan] v{version}

AI-powered terminal coding assistant

Jump Code works in your terminal. It can:

[green]•[/green] Read, write and edit files
[green]•[/green] Search and explain code
[green]•[/green] Run commands, tests and git
[green]•[/green] See your screen and drive the pointer and keyboard
[green]•[/green] Remember each project's conversation

[dim]Memory: {memory}[/dim]"""


def tree_lines(root: Path, max_depth: int = TREE_DEPTH, prefix: str = "", depth: int = 1) -> List[str]:
    """Render ``root`` as tree lines with ├── / └── connectors."""
    try:
        entries = sorted(
            (e for e in root.iterdir() if e.name not in EXCLUDED_DIRS),
            key=lambda e: (not e.is_dir(), e.name.lower()),
        )
    except OSError:
        return []

    lines = []
    for index, entry in enumerate(entries):
        last = index == len(entries) - 1
        connector = "└── " if last else "├── "
        is_dir = entry.is_dir() and not entry.is_symlink()
        lines.append(f"{prefix}{connector}{entry.name}{'/' if is_dir else ''}")
        if is_dir and depth < max_depth:
            lines.extend(tree_lines(entry, max_depth, prefix + ("    " if last else "│   "), depth + 1))
    return lines


def turn_preview(turn: Turn, limit: int = HISTORY_PREVIEW_CHARS) -> str:
    """Short one-line description of a turn for /history."""
    text = " ".join(turn.text.split())
    if not text:
        if turn.tool_uses:
            text = "[tool: " + ", ".join(b.name for b in turn.tool_uses) + "]"
        elif turn.tool_results:
            text = f"[{len(turn.tool_results)} tool result{'s' if len(turn.tool_results) != 1 else ''}]"
    if len(text) > limit:
        text = text[:limit] + "..."
    return text


class CommandDispatcher:
    """Routes ``/name args`` lines to handlers.

    Unknown commands and handler failures are reported, never raised;
    only /exit and /quit escape, as UserExit.
    """

    def __init__(
        self,
        agent,
        display: Optional[DisplayManager] = None,
        config_manager: Optional[ConfigManager] = None,
        converse: Optional[Callable[..., Awaitable[Any]]] = None,
        editor: Callable[..., Optional[str]] = click.edit,
        on_clear: Optional[Callable[[], None]] = None,
    ):
        self.agent = agent
        self.display = display or default_display
        self.config_manager = config_manager or default_config_manager
        self.converse = converse or agent.converse
        self.editor = editor
        self.on_clear = on_clear
        self.commands: Dict[str, Callable[[str, List[str]], Awaitable[None]]] = {
            "help": self.cmd_help,
            "read": self.cmd_read,
            "edit": self.cmd_edit,
            "write": self.cmd_write,
            "search": self.cmd_search,
            "tree": self.cmd_tree,
            "run": self.cmd_run,
            "bash": self.cmd_run,
            "git": self.cmd_git,
            "screen": self.cmd_screen,
            "screenshot": self.cmd_screen,
            "click": self.cmd_click,
            "type": self.cmd_type,
            "key": self.cmd_key,
            "move": self.cmd_move,
            "scroll": self.cmd_scroll,
            "windows": self.cmd_windows,
            "clipboard": self.cmd_clipboard,
            "clear": self.cmd_clear,
            "forget": self.cmd_forget,
            "config": self.cmd_config,
            "model": self.cmd_model,
            "history": self.cmd_history,
            "context": self.cmd_context,
            "about": self.cmd_about,
            "exit": self.cmd_exit,
            "quit": self.cmd_exit,
        }

    @staticmethod
    def is_command(line: str) -> bool:
        return line.strip().startswith(COMMAND_PREFIX)

    def command_names(self) -> List[str]:
        return [COMMAND_PREFIX + name for name in self.commands]

    async def dispatch(self, line: str) -> None:
        """Run one command line."""
        name, _, arg_str = line.strip()[len(COMMAND_PREFIX):].partition(" ")
        name = name.lower()
        arg_str = arg_str.strip()

        handler = self.commands.get(name)
        if handler is None:
            self.display.print(f"Unknown command: /{name}", style="red")
            self.display.print("Type /help for available commands", style="dim")
            return

        try:
            await handler(arg_str, arg_str.split())
        except UserExit:
            raise
        except Exception as e:
            logger.debug("Command /%s failed", name, exc_info=True)
            self.display.print_error(f"Command failed: {e}")

    # Helpers

    def _usage(self, usage: str) -> None:
        self.display.print(f"Usage: {usage}", style="yellow")

    async def _tool(self, name: str, arguments: Dict[str, Any]):
        """Run a catalog tool directly; the operator typed it, so no confirmation."""
        return await self.agent.registry.execute(
            name, arguments, self.agent.execution_context(), confirm=False
        )

    @property
    def automation(self) -> AutomationBackend:
        if self.agent.automation is None:
            self.agent.automation = detect_backend()
        return self.agent.automation

    def _report(self, result: ActionResult, success_message: str) -> None:
        if result.success:
            self.display.print_success(success_message)
        else:
            self.display.print(f"✗ {result.error}", style="red")

    @staticmethod
    def _coordinates(args: List[str]) -> Optional[List[int]]:
        if len(args) < 2:
            return None
        try:
            return [int(float(args[0])), int(float(args[1]))]
        except (ValueError, OverflowError):
            return None

    # File commands

    async def cmd_help(self, arg_str: str, args: List[str]) -> None:
        self.display.print_help(HELP)

    async def cmd_read(self, arg_str: str, args: List[str]) -> None:
        if not arg_str:
            return self._usage("/read <file>")
        result = await self._tool("Read", {"file_path": arg_str})
        if result.is_error:
            self.display.print(f"Could not read {arg_str}: {result.output}", style="red")
            return
        self.display.print_header(arg_str, style="bold cyan")
        self.display.print_code(result.output, filename=arg_str)

    async def cmd_edit(self, arg_str: str, args: List[str]) -> None:
        if not arg_str:
            return self._usage("/edit <file>")

        current = ""
        result = await self._tool("Read", {"file_path": arg_str})
        if result.is_error:
            self.display.print(f"{arg_str} does not exist yet; it will be created.", style="yellow")
        else:
            current = result.output
            self.display.print_code(current, filename=arg_str)

        choice = self.display.ask_choice("What would you like to do?", EDIT_CHOICES, default="d")
        if choice == "c":
            return

        if choice == "d":
            description = self.display.console.input("Describe the changes: ").strip()
            if not description:
                self.display.print("No description given.", style="yellow")
                return
            await self.converse(f"Edit the file {arg_str}: {description}")
            return

        if choice == "r":
            new_content = self.editor(current, extension=Path(arg_str).suffix or ".txt")
        else:
            addition = self.editor("", extension=Path(arg_str).suffix or ".txt")
            new_content = None if addition is None else current + ("\n" if current and not current.endswith("\n") else "") + addition
        if new_content is None:
            self.display.print("Editor closed without saving; nothing changed.", style="yellow")
            return

        written = await self._tool("Write", {"file_path": arg_str, "content": new_content})
        self.display.print_tool_result("Write", written.output, written.is_error, written.data)

    async def cmd_write(self, arg_str: str, args: List[str]) -> None:
        if not arg_str:
            return self._usage("/write <file>")
        content = self.editor("", extension=Path(arg_str).suffix or ".txt")
        if content is None:
            self.display.print("Editor closed without saving; nothing written.", style="yellow")
            return
        result = await self._tool("Write", {"file_path": arg_str, "content": content})
        self.display.print_tool_result("Write", result.output, result.is_error, result.data)

    async def cmd_search(self, arg_str: str, args: List[str]) -> None:
        if not arg_str:
            return self._usage("/search <text>")
        result = await self._tool("Grep", {"pattern": re.escape(arg_str)})
        if result.is_error:
            self.display.print(f"Search failed: {result.output}", style="red")
            return
        if not (result.data or {}).get("count"):
            self.display.print(f"No results found for: {arg_str}", style="yellow")
            return

        lines = [l for l in result.output.splitlines() if not l.startswith("(Showing first")]
        suffix = "+" if result.data.get("truncated") else ""
        self.display.print(f"\nFound {len(lines)}{suffix} matches:\n", style="cyan")
        for line in lines[:SEARCH_DISPLAY_LIMIT]:
            location, _, text = line.partition(":")
            number, _, text = text.partition(":")
            self.display.print(f"[dim]{escape(location)}:{number}[/dim] {escape(text.strip()[:100])}", highlight=False)
        if len(lines) > SEARCH_DISPLAY_LIMIT:
            self.display.print(f"\n... and {len(lines) - SEARCH_DISPLAY_LIMIT} more matches", style="dim")

    async def cmd_tree(self, arg_str: str, args: List[str]) -> None:
        root = self.agent.execution_context().resolve(arg_str or ".")
        if not root.is_dir():
            self.display.print(f"Not a directory: {arg_str}", style="red")
            return
        self.display.print_directory_tree(f"{root.name or root}/", tree_lines(root, TREE_DEPTH))

    async def cmd_run(self, arg_str: str, args: List[str]) -> None:
        if not arg_str:
            return self._usage("/run <command>")
        self.display.print(f"$ {arg_str}", style="dim", highlight=False)
        result = await self._tool("Bash", {"command": arg_str})
        self.display.print(result.output, style="red" if result.is_error else None, highlight=False, markup=False)

    async def cmd_git(self, arg_str: str, args: List[str]) -> None:
        await self.cmd_run(f"git {arg_str}" if arg_str else "git status", [])

    # Computer control commands

    async def cmd_screen(self, arg_str: str, args: List[str]) -> None:
        self.display.start_status("Capturing screen...")
        try:
            result = await self.automation.screenshot(arg_str or None)
        finally:
            self.display.stop_status()
        if not result.success:
            self.display.print(f"Screenshot failed: {result.error}", style="red")
            return
        self.display.print_success("Screenshot captured")
        self.display.print(f"Saved to: {result.data['path']}", style="dim")
        if self.display.ask_confirmation("Have Jump Code analyze the screenshot?", default=True):
            image = ImageBlock(media_type=result.data.get("media_type", "image/png"), data=result.data["base64"])
            await self.converse("Analyze this screenshot and describe what you see.", image=image)

    async def cmd_click(self, arg_str: str, args: List[str]) -> None:
        coords = self._coordinates(args)
        if coords is None:
            return self._usage("/click <x> <y>")
        result = await self.automation.click(*coords)
        self._report(result, f"Clicked at ({coords[0]}, {coords[1]})")

    async def cmd_type(self, arg_str: str, args: List[str]) -> None:
        if not arg_str:
            return self._usage("/type <text>")
        text = arg_str
        if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
            text = text[1:-1]
        result = await self.automation.type_text(text)
        self._report(result, f"Typed: {text}")

    async def cmd_key(self, arg_str: str, args: List[str]) -> None:
        if not arg_str:
            return self._usage("/key <key> (e.g. /key ctrl+c)")
        key, modifiers = parse_key_combo(arg_str.lower())
        result = await self.automation.key(key, modifiers)
        self._report(result, f"Pressed: {arg_str}")

    async def cmd_move(self, arg_str: str, args: List[str]) -> None:
        coords = self._coordinates(args)
        if coords is None:
            return self._usage("/move <x> <y>")
        result = await self.automation.move(*coords)
        self._report(result, f"Pointer moved to ({coords[0]}, {coords[1]})")

    async def cmd_scroll(self, arg_str: str, args: List[str]) -> None:
        amount, direction = 3, "down"
        for arg in args:
            if arg.lower() in ("up", "down", "left", "right"):
                direction = arg.lower()
            elif arg.lstrip("-").isdigit():
                amount = int(arg)
            else:
                return self._usage("/scroll [amount] [up|down|left|right]")
        result = await self.automation.scroll(amount, direction)
        self._report(result, f"Scrolled {direction} {amount} times")

    async def cmd_windows(self, arg_str: str, args: List[str]) -> None:
        result = await self.automation.list_windows()
        if not result.success:
            self.display.print(f"Could not list windows: {result.error}", style="yellow")
            return
        windows = result.data.get("windows", [])
        if not windows:
            self.display.print("No windows found.", style="yellow")
            return
        self.display.print("\nOpen windows:\n", style="bold cyan")
        for index, window in enumerate(windows, 1):
            self.display.print(f"  {index}. {window.get('name', '')}", highlight=False, markup=False)

    async def cmd_clipboard(self, arg_str: str, args: List[str]) -> None:
        if not args or args[0] == "get":
            result = await self.automation.get_clipboard()
            if result.success:
                self.display.print("\nClipboard contents:\n", style="cyan")
                self.display.print(result.data.get("content", ""), highlight=False, markup=False)
            else:
                self.display.print(f"Could not read clipboard: {result.error}", style="red")
        elif args[0] == "set":
            text = arg_str[len("set"):].strip()
            result = await self.automation.set_clipboard(text)
            self._report(result, "Clipboard set")
        else:
            self._usage("/clipboard [get|set <text>]")

    # Session commands

    async def cmd_clear(self, arg_str: str, args: List[str]) -> None:
        self.agent.reset()
        self.display.clear_screen()
        if self.on_clear:
            self.on_clear()
        self.display.print("Conversation cleared. Memory on disk is kept; use /forget to delete it.", style="dim")

    async def cmd_forget(self, arg_str: str, args: List[str]) -> None:
        deleted = self.agent.forget()
        if deleted:
            self.display.print_success("Conversation cleared and memory file deleted")
        else:
            self.display.print_success("Conversation cleared (no memory file existed)")

    async def cmd_config(self, arg_str: str, args: List[str]) -> None:
        if not args:
            data = self.config_manager.config.model_dump()
            data["llm"].pop("api_key", None)
            self.display.print_tree(data, title=f"Configuration ({self.config_manager.config_path})")
            return
        if len(args) < 2:
            return self._usage("/config <key> <value>")

        key, value = args[0], arg_str[len(args[0]):].strip()
        try:
            coerced = self.config_manager.set_value(key, value)
        except ConfigurationError as e:
            self.display.print_error(str(e))
            return
        self.agent.apply_config(self.config_manager.config)
        self.display.print_success(f"{key} = {coerced}")

    async def cmd_model(self, arg_str: str, args: List[str]) -> None:
        model = arg_str
        if not model:
            self.display.print(f"Current model: {self.agent.llm.model}", style="cyan")
            provider = self.agent.config.llm.provider
            options = MODEL_CHOICES.get(provider, [])
            choices = {str(i): name for i, name in enumerate(options, 1)}
            choices["c"] = "Custom..."
            choices["k"] = "Keep current"
            choice = self.display.ask_choice("Select model", choices, default="k")
            if choice == "k":
                return
            if choice == "c":
                model = self.display.console.input("Model name: ").strip()
                if not model:
                    return
            else:
                model = choices[choice]

        self.agent.set_model(model)
        try:
            self.config_manager.set_value("llm.model", model)
        except ConfigurationError as e:
            self.display.print_warning(f"Model changed for this session only: {e}")
            return
        self.agent.apply_config(self.config_manager.config)
        self.display.print_success(f"Model set to: {model}")

    async def cmd_history(self, arg_str: str, args: List[str]) -> None:
        history = self.agent.history
        if not history:
            self.display.print("No conversation history yet.", style="yellow")
            return

        self.display.print("\nConversation history:\n", style="bold cyan")
        for turn in history[-HISTORY_TURNS:]:
            who = "[green]You[/green]" if turn.role == Role.OPERATOR else "[cyan]Jump Code[/cyan]"
            self.display.print(f"{who}: {escape(turn_preview(turn))}", highlight=False)

        tokens = self.agent.llm.count_turn_tokens(history)
        self.display.print(f"\n{len(history)} turns, about {tokens} tokens", style="dim")

    async def cmd_context(self, arg_str: str, args: List[str]) -> None:
        context = self.agent.project_context
        if context is None:
            self.display.print("No project context available.", style="yellow")
            return
        self.display.print_tree(context.model_dump(), title="Project context")

    async def cmd_about(self, arg_str: str, args: List[str]) -> None:
        self.display.print_panel(
            ABOUT.format(
                version=self.agent.config.version,
                memory=self.agent.store.path_for(self.agent.working_directory),
            ),
            title="About",
            style="white",
            border_style="cyan",
        )

    async def cmd_exit(self, arg_str: str, args: List[str]) -> None:
        raise UserExit()
