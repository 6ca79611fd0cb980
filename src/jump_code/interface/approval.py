"""Confirmation policies for side-effectful tools and desktop actions."""

from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional, Set, Tuple
from rich.text import Text
from .display import DisplayManager, display as default_display


class ConfirmationPolicy(ABC):
    """Decides whether a side-effectful operation may run.

    ``confirm`` is awaited by the executor before Bash, Write, Edit and
    desktop actions. Returning False produces a denied tool result.
    """

    @abstractmethod
    async def confirm(self, tool_name: str, preview: str, arguments: Dict[str, Any]) -> bool:
        pass


class AutoConfirmation(ConfirmationPolicy):
    """Headless policy: accepts or denies everything, recording each request."""

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.requests: List[Tuple[str, Dict[str, Any]]] = []

    async def confirm(self, tool_name: str, preview: str, arguments: Dict[str, Any]) -> bool:
        self.requests.append((tool_name, arguments))
        return self.accept


class InteractiveConfirmation(ConfirmationPolicy):
    """Asks the operator, with session-wide always/never answers per tool."""

    def __init__(self, display: Optional[DisplayManager] = None):
        self.display = display or default_display
        self.always_allow: Set[str] = set()
        self.never_allow: Set[str] = set()

    async def confirm(self, tool_name: str, preview: str, arguments: Dict[str, Any]) -> bool:
        if tool_name in self.never_allow:
            return False
        if tool_name in self.always_allow:
            return True

        self.display.stop_status()
        self.display.end_stream()
        self.display.print_panel(
            Text(preview),
            title=f"Allow {tool_name}?",
            style="yellow",
            border_style="yellow"
        )
        self.display.print(
            "  [bold green]y[/bold green] yes  [bold red]n[/bold red] no  "
            f"[bold cyan]a[/bold cyan] always allow {tool_name}  "
            f"[bold magenta]never[/bold magenta] never allow {tool_name}  "
            "[bold blue]details[/bold blue] show arguments"
        )

        while True:
            try:
                response = self.display.console.input("Your choice: ").strip().lower()
            except (KeyboardInterrupt, EOFError):
                self.display.print("\nDenied", style="yellow")
                return False

            if response in ("y", "yes"):
                return True
            if response in ("n", "no", ""):
                return False
            if response in ("a", "always"):
                self.always_allow.add(tool_name)
                self.display.print_success(f"{tool_name} will run without asking for the rest of this session")
                return True
            if response == "never":
                self.never_allow.add(tool_name)
                self.display.print(f"{tool_name} will be denied for the rest of this session", style="yellow")
                return False
            if response == "details":
                self.display.print_tree(arguments, title=tool_name)
                continue
            self.display.print("Please enter y, n, a, never or details", style="red")

    def reset(self) -> None:
        """Forget always/never answers."""
        self.always_allow.clear()
        self.never_allow.clear()
