"""Terminal interface for Jump Code."""

from .terminal import TerminalInterface
from .approval import AutoConfirmation, ConfirmationPolicy, InteractiveConfirmation
from .commands import CommandDispatcher
from .display import DisplayManager

__all__ = [
    "TerminalInterface",
    "AutoConfirmation",
    "ConfirmationPolicy",
    "InteractiveConfirmation",
    "CommandDispatcher",
    "DisplayManager",
]
