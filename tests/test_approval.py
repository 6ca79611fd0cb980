"""
Tests for the interactive confirmation prompt, with console input scripted.
"""

import io
import pytest
from unittest.mock import Mock

from rich.console import Console

from jump_code.interface.approval import InteractiveConfirmation
from jump_code.interface.display import DisplayManager


@pytest.fixture
def display():
    manager = DisplayManager(color_output=False)
    manager.console = Console(file=io.StringIO(), width=120, color_system=None)
    return manager


def answer(display, *replies):
    display.console.input = Mock(side_effect=list(replies))


def output(display) -> str:
    return display.console.file.getvalue()


class TestInteractiveConfirmation:

    async def test_bracketed_preview_printed_verbatim(self, display):
        answer(display, "y")
        policy = InteractiveConfirmation(display)

        assert await policy.confirm("Bash", "$ echo '[/b]' [bold]", {"command": "echo '[/b]'"})
        assert "$ echo '[/b]' [bold]" in output(display)

    async def test_details_with_bracketed_arguments(self, display):
        answer(display, "details", "n")
        policy = InteractiveConfirmation(display)

        approved = await policy.confirm("Write", "Write 1 lines to a.txt", {"content": "[/red] [x]", "file_path": "a.txt"})

        assert approved is False
        assert "content: [/red] [x]" in output(display)

    async def test_always_and_never_remembered(self, display):
        answer(display, "a", "never")
        policy = InteractiveConfirmation(display)

        assert await policy.confirm("Bash", "$ ls", {})
        assert await policy.confirm("Bash", "$ ls", {})
        assert await policy.confirm("Write", "Write", {}) is False
        assert await policy.confirm("Write", "Write", {}) is False
        assert display.console.input.call_count == 2

        policy.reset()
        answer(display, "")
        assert await policy.confirm("Bash", "$ ls", {}) is False

    async def test_end_of_input_denies(self, display):
        answer(display, EOFError())
        assert await InteractiveConfirmation(display).confirm("Bash", "$ ls", {}) is False
