"""
Jump Code

An agentic coding assistant for the terminal: a model drives local tools
(shell, file reads and edits, search) and, optionally, the desktop.
"""

__version__ = "1.0.0"

from .core.agent import CodingAgent
from .interface.terminal import TerminalInterface

__all__ = ["CodingAgent", "TerminalInterface"]
