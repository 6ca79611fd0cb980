"""Display manager for rich terminal output."""

from typing import Dict, Any, Optional, Sequence, Union
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.status import Status
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

# Fields shown next to a tool name, in order of preference
TOOL_SUMMARY_FIELDS = ("command", "file_path", "pattern")
MAX_RESULT_LINES = 8


class DisplayManager:
    """Manages rich terminal display and formatting."""

    def __init__(self, color_output: bool = True, verbose: bool = False):
        self.console = Console(color_system="auto" if color_output else None)
        self.verbose = verbose
        self.current_status: Optional[Status] = None
        self._streaming = False

    def configure(self, color_output: bool = True, verbose: bool = False) -> None:
        """Apply interface settings once configuration is loaded."""
        if not color_output:
            self.console = Console(color_system=None)
        self.verbose = verbose

    def print(self, *args, **kwargs) -> None:
        """Print with rich formatting."""
        self.console.print(*args, **kwargs)

    def print_panel(
        self,
        content: Union[str, Text],
        title: Optional[str] = None,
        style: str = "blue",
        border_style: str = "blue"
    ) -> None:
        """Print content in a panel."""
        panel = Panel(
            content,
            title=title,
            style=style,
            border_style=border_style,
            padding=(1, 2)
        )
        self.console.print(panel)

    def print_header(self, text: str, style: str = "bold blue") -> None:
        """Print a header."""
        self.console.print(f"\n{text}", style=style, markup=False)
        self.console.print("─" * len(text), style=style)

    def _labelled(self, label: str, message: str, style: str, details: Optional[str]) -> Text:
        text = Text(f"{label}: ", style=f"bold {style}")
        text.append(message, style=style)
        if details:
            text = Text.assemble(text, "\n\n", details)
        return text

    def print_error(self, message: str, details: Optional[str] = None) -> None:
        """Print an error message."""
        self.print_panel(self._labelled("ERROR", message, "red", details),
                         title="Error", style="red", border_style="red")

    def print_warning(self, message: str, details: Optional[str] = None) -> None:
        self.print_panel(self._labelled("WARNING", message, "yellow", details),
                         title="Warning", style="yellow", border_style="yellow")

    def print_success(self, message: str) -> None:
        self.console.print(f"✓ {message}", style="green")

    def print_code(
        self,
        code: str,
        filename: Optional[str] = None,
        language: Optional[str] = None,
        start_line: int = 1,
        theme: str = "monokai",
    ) -> None:
        """Print syntax-highlighted code with line numbers."""
        lexer = language or Syntax.guess_lexer(filename or "", code)
        syntax = Syntax(
            code,
            lexer,
            theme=theme,
            line_numbers=True,
            start_line=start_line,
            word_wrap=True
        )
        self.console.print(syntax)

    def print_markdown(self, markdown_text: str) -> None:
        """Print markdown-formatted text."""
        self.console.print(Markdown(markdown_text))

    def print_tree(self, root_data: Dict[str, Any], title: Optional[str] = None) -> None:
        """Print nested data (configuration, status) as a tree."""
        tree = Tree(escape(title or "Data"))
        self._add_tree_nodes(tree, root_data)
        self.console.print(tree)

    def _add_tree_nodes(self, parent, data: Any) -> None:
        if isinstance(data, dict):
            for key, value in data.items():
                if isinstance(value, (dict, list)) and value:
                    branch = parent.add(f"[bold]{escape(str(key))}[/bold]")
                    self._add_tree_nodes(branch, value)
                else:
                    parent.add(escape(f"{key}: {value}"))
        elif isinstance(data, list):
            for item in data:
                if isinstance(item, (dict, list)):
                    self._add_tree_nodes(parent.add("•"), item)
                else:
                    parent.add(escape(str(item)))
        else:
            parent.add(escape(str(data)))

    def print_directory_tree(self, root: str, lines: Sequence[str]) -> None:
        """Print pre-rendered directory tree lines (with ├── / └── connectors)."""
        self.console.print(root, style="bold blue")
        for line in lines:
            self.console.print(line, highlight=False, markup=False)

    def print_diff(self, diff: str, filename: str = "") -> None:
        """Print a unified diff: added lines green, removed lines red."""
        diff_text = Text()
        for line in diff.splitlines():
            if line.startswith('+++') or line.startswith('---'):
                diff_text.append(line, style="bold")
            elif line.startswith('@@'):
                diff_text.append(line, style="cyan")
            elif line.startswith('+'):
                diff_text.append(line, style="green")
            elif line.startswith('-'):
                diff_text.append(line, style="red")
            else:
                diff_text.append(line)
            diff_text.append("\n")

        if diff_text.plain.strip():
            self.print_panel(
                diff_text.rstrip() or diff_text,
                title=f"Diff: {filename}" if filename else "Diff",
                style="white",
                border_style="white"
            )
        else:
            self.print("No differences found", style="dim")

    def start_status(self, status: str = "Thinking...") -> Status:
        """Start a status spinner."""
        self.stop_status()
        self.current_status = Status(status, console=self.console, spinner="dots")
        self.current_status.start()
        return self.current_status

    def stop_status(self) -> None:
        """Stop the current status spinner."""
        if self.current_status:
            self.current_status.stop()
            self.current_status = None

    def print_tool_call(self, name: str, arguments: Dict[str, Any]) -> None:
        """One line announcing a tool call."""
        self.end_stream()
        summary = next((str(arguments[f]) for f in TOOL_SUMMARY_FIELDS if arguments.get(f)), "")
        if len(summary) > 80:
            summary = summary[:77] + "..."
        line = Text("⚡ ", style="yellow")
        line.append(name, style="bold yellow")
        if summary:
            line.append(f" {summary}", style="dim")
        self.console.print(line)

    def print_tool_result(self, name: str, output: str, is_error: bool = False,
                          data: Optional[Dict[str, Any]] = None) -> None:
        """Summarize a tool result; diffs from Write/Edit are shown in full."""
        lines = output.splitlines() or [""]
        icon, style = ("✗", "red") if is_error else ("✓", "green")
        self.console.print(f"  {icon} {lines[0]}", style=style, highlight=False)
        if self.verbose or is_error:
            shown = lines[1:MAX_RESULT_LINES]
            for line in shown:
                self.console.print(f"    {line}", style="dim", highlight=False)
            if len(lines) > MAX_RESULT_LINES:
                self.console.print(f"    ... {len(lines) - MAX_RESULT_LINES} more lines", style="dim")
        if data and data.get("diff") and not is_error:
            self.print_diff(data["diff"], data.get("path", ""))

    def print_action_result(self, action: str, success: bool, detail: str = "") -> None:
        icon, style = ("✓", "green") if success else ("✗", "red")
        message = f"  {icon} {action}"
        if detail:
            message += f": {detail}"
        self.console.print(message, style=style, highlight=False)

    def print_help(self, commands: Dict[str, str]) -> None:
        """Print help information."""
        self.print_header("Commands")

        table = Table()
        table.add_column("Command", style="cyan")
        table.add_column("Description", style="white")
        for command, description in commands.items():
            table.add_row(escape(command), escape(description))
        self.console.print(table)
        self.console.print("Anything else is sent to the assistant.", style="dim")

    def clear_screen(self) -> None:
        """Clear the terminal screen."""
        self.console.clear()

    def print_separator(self, char: str = "─", style: str = "dim") -> None:
        """Print a separator line."""
        width = self.console.size.width
        self.console.print(char * width, style=style)

    def ask_confirmation(self, message: str, default: bool = False) -> bool:
        """Ask for user confirmation."""
        default_str = "Y/n" if default else "y/N"
        response = self.console.input(f"{message} [{default_str}]: ").strip().lower()

        if not response:
            return default

        return response in ['y', 'yes', 'true', '1']

    def ask_choice(self, message: str, choices: Dict[str, str], default: str) -> str:
        """Ask for one of ``choices`` (key -> label); returns the key."""
        for key, label in choices.items():
            self.console.print(f"  [bold cyan]{key}[/bold cyan] - {label}")
        while True:
            response = self.console.input(f"{message} [{default}]: ").strip().lower() or default
            if response in choices:
                return response
            self.print(f"Please enter one of: {', '.join(choices)}", style="red")

    def print_streaming_response(self, text: str) -> None:
        """Print streaming text without newlines."""
        self.stop_status()
        self._streaming = True
        self.console.print(text, end="", highlight=False, markup=False)

    def end_stream(self) -> None:
        """Terminate a streamed line, if one is open."""
        if self._streaming:
            self.console.print()
            self._streaming = False

    def print_response(self, text: str) -> None:
        """Render a complete (non-streamed) assistant response as markdown."""
        self.stop_status()
        if text.strip():
            self.print_markdown(text)

    def print_usage(self, input_tokens: int, output_tokens: int) -> None:
        self.console.print(f"tokens: {input_tokens} in / {output_tokens} out", style="dim")


# Global display manager instance
display = DisplayManager()
