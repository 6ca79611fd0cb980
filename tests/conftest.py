"""
Pytest configuration and shared fixtures for the Jump Code test suite.
"""

import pytest
import asyncio
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

# Add src to path for imports during testing
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

# Keep the global config manager away from the real home directory
os.environ["JUMP_CODE_HOME"] = tempfile.mkdtemp(prefix="jump-code-test-home-")

from jump_code.automation.base import AutomationBackend, AutomationCapability, NullBackend, action
from jump_code.core.agent import CodingAgent
from jump_code.interface.approval import AutoConfirmation
from jump_code.llm.base import (
    BaseLLMProvider,
    ModelResponse,
    StopReason,
    StreamComplete,
    TextBlock,
    TextDelta,
    ToolUseBlock,
    Usage,
)
from jump_code.llm.manager import LLMManager
from jump_code.memory.session import SessionStore
from jump_code.utils.config import AgentConfig, LLMConfig

# Disable logging during tests to reduce noise
logging.getLogger("jump_code").setLevel(logging.CRITICAL)


def text_response(text: str) -> ModelResponse:
    return ModelResponse(
        content=[TextBlock(text=text)],
        stop_reason=StopReason.END_TURN,
        usage=Usage(input_tokens=10, output_tokens=5),
    )


def tool_response(*calls, text: str = "") -> ModelResponse:
    """``calls`` are (id, name, input) tuples."""
    content: List[Any] = [TextBlock(text=text)] if text else []
    content += [ToolUseBlock(id=call_id, name=name, input=arguments) for call_id, name, arguments in calls]
    return ModelResponse(
        content=content,
        stop_reason=StopReason.TOOL_USE,
        usage=Usage(input_tokens=10, output_tokens=5),
    )


class ScriptedProvider(BaseLLMProvider):
    """Replays prepared responses and records what it was sent.

    Once the script runs out the last response is repeated. An exception
    in the script is raised instead of returned.
    """

    def __init__(self, responses: List[Any]):
        super().__init__(api_key="test-key", model="test-model")
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []
        self.initialized = False

    async def initialize(self) -> None:
        self.initialized = True

    def _next(self, turns, system_prompt, tools) -> ModelResponse:
        self.calls.append({
            "turns": [t.model_copy(deep=True) for t in turns],
            "system": system_prompt,
            "tools": [t.name for t in tools],
        })
        index = min(len(self.calls) - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, BaseException):
            raise response
        return response

    async def send(self, turns, system_prompt, tools, **kwargs) -> ModelResponse:
        return self._next(turns, system_prompt, tools)

    async def stream(self, turns, system_prompt, tools, **kwargs):
        response = self._next(turns, system_prompt, tools)
        text = response.text
        for i in range(0, len(text), 4):
            yield TextDelta(text=text[i:i + 4])
        yield StreamComplete(response=response)

    def count_tokens(self, text: str) -> int:
        return len(text.split())


class RecordingBackend(AutomationBackend):
    """Automation backend that records calls instead of touching the desktop."""

    platform_name = "test"

    def __init__(self, **kwargs):
        super().__init__(
            capability=AutomationCapability(
                platform="test", screenshot="fake", pointer="fake", keyboard="fake",
                clipboard="fake", windowing="fake",
            ),
            **kwargs
        )
        self.calls: List[tuple] = []
        self.clipboard = ""

    @action
    async def screenshot(self, window: Optional[str] = None) -> Dict[str, Any]:
        self.calls.append(("screenshot", window))
        return {"path": "/tmp/jump-code-screenshots/test.png", "base64": "iVBORw0KGgo=", "media_type": "image/png"}

    @action
    async def move(self, x: int, y: int) -> Dict[str, Any]:
        self.calls.append(("move", x, y))
        return {"x": x, "y": y}

    @action
    async def click(self, x=None, y=None, button: str = "left", clicks: int = 1) -> Dict[str, Any]:
        self.calls.append(("click", x, y, button, clicks))
        return {"x": x, "y": y, "button": button, "clicks": clicks}

    @action
    async def scroll(self, amount: int = 3, direction: str = "down") -> Dict[str, Any]:
        self.calls.append(("scroll", amount, direction))
        return {"amount": amount, "direction": direction}

    @action
    async def type_text(self, text: str) -> Dict[str, Any]:
        self.calls.append(("type", text))
        return {"text": text}

    @action
    async def key(self, key: str, modifiers=None) -> Dict[str, Any]:
        self.calls.append(("key", key, list(modifiers or [])))
        return {"key": key, "modifiers": list(modifiers or [])}

    @action
    async def get_clipboard(self) -> Dict[str, Any]:
        return {"content": self.clipboard}

    @action
    async def set_clipboard(self, text: str) -> Dict[str, Any]:
        self.clipboard = text
        return {"length": len(text)}

    @action
    async def list_windows(self) -> Dict[str, Any]:
        return {"windows": [{"id": "0x1", "name": "Terminal"}, {"id": "0x2", "name": "Editor"}]}


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def project_dir(tmp_path):
    """An empty working directory for the agent."""
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def sample_project_structure(temp_dir):
    """Create a sample project structure for testing."""
    project_dir = Path(temp_dir)

    (project_dir / "README.md").write_text("# Sample Project\n\nThis is a test project.")
    (project_dir / "requirements.txt").write_text("requests>=2.25.0\nclick>=8.0.0\nflask>=2.0\npytest>=7.0\n")
    (project_dir / ".gitignore").write_text("__pycache__/\n*.pyc\n.env\n")
    (project_dir / "app.py").write_text("from flask import Flask\n\napp = Flask(__name__)\n")

    src_dir = project_dir / "src"
    src_dir.mkdir()
    (src_dir / "__init__.py").write_text("")
    (src_dir / "main.py").write_text("def main():\n    return 'Hello, World!'\n")

    tests_dir = project_dir / "tests"
    tests_dir.mkdir()
    (tests_dir / "test_main.py").write_text("def test_main():\n    assert True\n")

    node_modules = project_dir / "node_modules" / "left-pad"
    node_modules.mkdir(parents=True)
    (node_modules / "index.py").write_text("# not project code\n")

    return project_dir


@pytest.fixture
def mock_git_repo(temp_dir):
    """Create a git repository with one commit."""
    import git

    repo_dir = Path(temp_dir)
    repo = git.Repo.init(repo_dir)

    with repo.config_writer() as git_config:
        git_config.set_value("user", "name", "Test User")
        git_config.set_value("user", "email", "test@example.com")

    test_file = repo_dir / "README.md"
    test_file.write_text("# Test Repository\n\nThis is a test repository.")
    repo.index.add([str(test_file)])
    repo.index.commit("Initial commit")

    yield repo_dir
    repo.close()


@pytest.fixture
def agent_config():
    """Configuration suited to tests: no streaming, no desktop control."""
    return AgentConfig(
        llm=LLMConfig(provider="openai", model="test-model", api_key="test-key"),
        streaming=False,
        computer_control_enabled=False,
        auto_screenshot=False,
        confirm_actions=False,
    )


@pytest.fixture
def session_store(tmp_path):
    return SessionStore(tmp_path / "memory")


@pytest.fixture
def recording_backend(tmp_path):
    return RecordingBackend(screenshot_dir=tmp_path / "shots")


@pytest.fixture
def make_agent(agent_config, project_dir, session_store):
    """Factory: ``make_agent(responses, confirmation=None, automation=None, **config)``."""

    def _make(responses, confirmation=None, automation=None, **overrides):
        config = agent_config.model_copy(update=overrides, deep=True)
        provider = ScriptedProvider(responses)
        agent = CodingAgent(
            config=config,
            working_directory=project_dir,
            llm=LLMManager(config.llm, provider=provider),
            automation=automation or NullBackend(),
            store=session_store,
            confirmation=confirmation,
        )
        agent.provider = provider
        return agent

    return _make


@pytest.fixture
def auto_accept():
    return AutoConfirmation(accept=True)


@pytest.fixture
def auto_deny():
    return AutoConfirmation(accept=False)


@pytest.fixture
def clean_environment(monkeypatch):
    """Ensure clean environment variables for testing."""
    for var in (
        "OPENAI_API_KEY",
        "ANTHROPIC_API_KEY",
        "OPENAI_BASE_URL",
        "JUMP_CODE_API_URL",
        "JUMP_CODE_API_KEY",
        "JUMP_CODE_MODEL",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)

        if asyncio.iscoroutinefunction(getattr(item, "function", None)):
            item.add_marker(pytest.mark.asyncio)
