"""
Tests for the interactive read loop, with the prompt replaced by scripted input.
"""

import io
import pytest
from unittest.mock import AsyncMock, patch

from rich.console import Console

from conftest import text_response
from jump_code.core.errors import QuotaError, TransportError
from jump_code.interface.display import DisplayManager
from jump_code.interface.terminal import TerminalInterface
from jump_code.utils.config import ConfigManager


@pytest.fixture
def display():
    manager = DisplayManager(color_output=False)
    manager.console = Console(file=io.StringIO(), width=120, color_system=None)
    return manager


@pytest.fixture
def make_terminal(make_agent, display, tmp_path, clean_environment):
    def _make(responses, inputs=()):
        agent = make_agent(responses)
        with patch("jump_code.interface.terminal.PromptSession"):
            terminal = TerminalInterface(agent, display=display,
                                         config_manager=ConfigManager(tmp_path / "home" / "config.yaml"))
        terminal._get_user_input = AsyncMock(side_effect=list(inputs) + [EOFError()])
        return terminal

    return _make


def output(terminal) -> str:
    return terminal.display.console.file.getvalue()


class TestProcessInput:

    async def test_renders_response(self, make_terminal):
        terminal = make_terminal([text_response("All **done**.")])

        response = await terminal.process_input("tidy up")

        assert response == "All **done**."
        assert "done" in output(terminal)

    async def test_token_usage_shown(self, make_terminal):
        terminal = make_terminal([text_response("ok")])
        terminal.agent.config.show_token_usage = True
        await terminal.process_input("hi")
        assert "tokens: 10 in / 5 out" in output(terminal)

    async def test_transport_error_keeps_message(self, make_terminal):
        terminal = make_terminal([TransportError("connection refused")])

        response = await terminal.process_input("hello?")

        assert response is None
        assert "Could not reach the model" in output(terminal)
        assert terminal.agent.history[-1].text == "hello?"

    async def test_quota_error(self, make_terminal):
        terminal = make_terminal([QuotaError()])
        terminal.agent.llm.config.quota_retries = 0
        await terminal.process_input("hello?")
        assert "Quota exceeded" in output(terminal)

    async def test_streaming(self, make_terminal):
        terminal = make_terminal([text_response("streamed words")])
        terminal.agent.config.streaming = True
        response = await terminal.process_input("go")
        assert response == "streamed words"
        assert "streamed words" in output(terminal)


class TestLoop:

    async def test_end_of_input_stops(self, make_terminal):
        terminal = make_terminal([text_response("ok")])
        await terminal.start()
        assert terminal.running is False
        assert "Goodbye!" in output(terminal)

    async def test_exit_command_stops(self, make_terminal):
        terminal = make_terminal([text_response("ok")], inputs=["/exit", "never read"])
        await terminal.start()
        assert terminal._get_user_input.await_count == 1

    async def test_messages_go_to_agent(self, make_terminal):
        terminal = make_terminal([text_response("hi there")], inputs=["hello", "   "])
        await terminal.start()
        assert [t.text for t in terminal.agent.history] == ["hello", "hi there"]

    async def test_conversation_saved_on_exit(self, make_terminal):
        terminal = make_terminal([text_response("noted")], inputs=["remember this"])
        await terminal.start()
        agent = terminal.agent
        assert agent.store.load(agent.working_directory).history[0].text == "remember this"

    async def test_commands_dispatched(self, make_terminal):
        terminal = make_terminal([text_response("ok")], inputs=["/nonsense"])
        await terminal.start()
        assert "Unknown command: /nonsense" in output(terminal)
        assert terminal.agent.history == []
