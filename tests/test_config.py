"""
Tests for configuration loading, environment overrides and dotted-key updates.
"""

import pytest
import yaml

from jump_code.core.errors import ConfigurationError
from jump_code.utils.config import DEFAULT_MODELS, AgentConfig, ConfigManager, default_home


@pytest.fixture
def manager(tmp_path, clean_environment):
    return ConfigManager(tmp_path / "home" / "config.yaml")


class TestLoading:

    def test_defaults_written_on_first_run(self, manager):
        config = manager.load_config()

        assert config.max_iterations == 25
        assert config.llm.provider == "openai"
        assert manager.config_path.exists()
        data = yaml.safe_load(manager.config_path.read_text())
        assert data["confirm_actions"] is True
        assert "api_key" not in data["llm"]

    def test_file_values_override_defaults(self, manager):
        manager.config_path.parent.mkdir(parents=True)
        manager.config_path.write_text(yaml.safe_dump({
            "max_iterations": 10,
            "streaming": False,
            "llm": {"provider": "anthropic", "model": "claude-x"},
        }))

        config = manager.load_config()

        assert config.max_iterations == 10
        assert config.streaming is False
        assert config.llm.model == "claude-x"
        assert config.bash_timeout == 120

    def test_unknown_keys_ignored(self, manager):
        manager.config_path.parent.mkdir(parents=True)
        manager.config_path.write_text(yaml.safe_dump({
            "colour_output": False,
            "llm": {"flavour": "spicy", "model": "m"},
        }))

        config = manager.load_config()

        assert config.color_output is True
        assert config.llm.model == "m"

    def test_invalid_values_fall_back(self, manager):
        manager.config_path.parent.mkdir(parents=True)
        manager.config_path.write_text(yaml.safe_dump({
            "max_iterations": -4,
            "bash_timeout": 30,
            "llm": {"temperature": 9},
        }))

        config = manager.load_config()

        assert config.max_iterations == 25
        assert config.bash_timeout == 30
        assert config.llm.temperature == 0.7

    def test_unparseable_file(self, manager):
        manager.config_path.parent.mkdir(parents=True)
        manager.config_path.write_text("key: [unclosed")
        assert manager.load_config() == AgentConfig()

    def test_home_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("JUMP_CODE_HOME", str(tmp_path / "custom"))
        assert default_home() == tmp_path / "custom"
        assert ConfigManager().memory_dir == tmp_path / "custom" / "memory"


class TestEnvironment:

    def test_openai_key(self, manager, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        config = manager.load_config()
        assert config.llm.api_key == "sk-test"
        assert config.llm.provider == "openai"

    def test_anthropic_key_switches_provider(self, manager, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "ak-test")
        config = manager.load_config()
        assert config.llm.provider == "anthropic"
        assert config.llm.model == DEFAULT_MODELS["anthropic"]

    def test_gateway(self, manager, monkeypatch):
        monkeypatch.setenv("JUMP_CODE_API_URL", "https://example.test/api/jump-code")
        monkeypatch.setenv("JUMP_CODE_API_KEY", "gw-key")
        config = manager.load_config()
        assert config.llm.provider == "gateway"
        assert config.llm.base_url == "https://example.test/api/jump-code"
        assert config.llm.api_key == "gw-key"

    def test_model_override(self, manager, monkeypatch):
        monkeypatch.setenv("JUMP_CODE_MODEL", "gpt-4o-mini")
        assert manager.load_config().llm.model == "gpt-4o-mini"

    def test_api_key_never_saved(self, manager, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-secret")
        manager.load_config()
        manager.set_value("verbose", True)
        assert "sk-secret" not in manager.config_path.read_text()


class TestSetValue:

    def test_top_level_coerced(self, manager):
        assert manager.set_value("max_iterations", "40") == 40
        assert manager.config.max_iterations == 40
        assert yaml.safe_load(manager.config_path.read_text())["max_iterations"] == 40

    def test_boolean_strings(self, manager):
        assert manager.set_value("streaming", "false") is False

    def test_dotted_key(self, manager):
        assert manager.set_value("llm.model", "gpt-4o-mini") == "gpt-4o-mini"
        assert manager.config.llm.model == "gpt-4o-mini"

    def test_unknown_key(self, manager):
        with pytest.raises(ConfigurationError):
            manager.set_value("llm.nonsense", "1")
        with pytest.raises(ConfigurationError):
            manager.set_value("nonsense", "1")

    def test_section_is_not_a_value(self, manager):
        with pytest.raises(ConfigurationError):
            manager.set_value("llm", "openai")

    def test_invalid_value_leaves_config_unchanged(self, manager):
        with pytest.raises(ConfigurationError) as exc_info:
            manager.set_value("bash_timeout", "forever")
        assert "bash_timeout" in str(exc_info.value)
        assert manager.config.bash_timeout == 120

    def test_reset(self, manager):
        manager.set_value("max_iterations", 3)
        manager.reset()
        assert manager.config.max_iterations == 25
        assert yaml.safe_load(manager.config_path.read_text())["max_iterations"] == 25
