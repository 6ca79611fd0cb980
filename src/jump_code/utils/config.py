"""Configuration management for Jump Code."""

import os
import logging
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field, ValidationError
from dotenv import load_dotenv
from ..core.errors import ConfigurationError

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "anthropic": "claude-sonnet-4-20250514",
    "gateway": "sonnet",
}


def default_home() -> Path:
    """Directory holding config.yaml and persisted memory."""
    override = os.getenv("JUMP_CODE_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".jump-code"


class LLMConfig(BaseModel):
    """Configuration for the model endpoint."""
    provider: str = Field(default="openai", description="Model provider (openai, anthropic, gateway)")
    model: str = Field(default=DEFAULT_MODELS["openai"], description="Model name")
    api_key: Optional[str] = Field(default=None, description="API key")
    base_url: Optional[str] = Field(default=None, description="Custom base URL or gateway endpoint")
    max_tokens: int = Field(default=4096, gt=0, description="Maximum tokens per response")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="Sampling temperature")
    request_timeout: float = Field(default=120.0, gt=0, description="Per-request timeout (seconds)")
    quota_retries: int = Field(default=2, ge=0, description="Retries after a quota/rate-limit error")
    retry_backoff: float = Field(default=2.0, ge=0, description="Initial retry delay (seconds), doubled per retry")
    requests_per_minute: int = Field(default=60, ge=0, description="Gateway requests allowed per minute (0 disables the limit)")


class AgentConfig(BaseModel):
    """Main Jump Code configuration."""

    # Core settings
    name: str = Field(default="Jump Code", description="Assistant name")
    version: str = Field(default="1.0.0", description="Assistant version")

    # Model settings
    llm: LLMConfig = Field(default_factory=LLMConfig)

    # Loop and tool settings
    max_iterations: int = Field(default=25, gt=0, description="Model calls allowed per request")
    bash_timeout: int = Field(default=120, gt=0, le=600, description="Default Bash timeout (seconds)")
    max_output_bytes: int = Field(default=30_000, gt=0, description="Captured command output cap (bytes)")
    confirm_actions: bool = Field(default=True, description="Ask before running side-effectful tools")

    # Memory settings
    max_history_turns: int = Field(default=100, gt=0, description="Turns kept in persisted memory")
    auto_save_history: bool = Field(default=True, description="Persist memory after each exchange")

    # Automation settings
    computer_control_enabled: bool = Field(default=True, description="Allow desktop automation")
    inline_file_references: bool = Field(default=True, description="Attach the contents of files named in a request")
    auto_screenshot: bool = Field(default=True, description="Attach a screen capture when the request is about the screen")

    # Interface settings
    verbose: bool = Field(default=False, description="Verbose output")
    color_output: bool = Field(default=True, description="Colored terminal output")
    streaming: bool = Field(default=True, description="Stream responses")
    show_token_usage: bool = Field(default=False, description="Show token usage after each response")


def _strip_invalid(data: Dict[str, Any]) -> AgentConfig:
    """Validate ``data``, dropping unknown or invalid keys with a warning."""
    data = dict(data)
    llm_data = data.get("llm")
    if isinstance(llm_data, dict):
        data["llm"] = dict(llm_data)
        for key in list(llm_data):
            if key not in LLMConfig.model_fields:
                logger.warning("Ignoring unknown config key: llm.%s", key)
                data["llm"].pop(key)
    for key in list(data):
        if key not in AgentConfig.model_fields:
            logger.warning("Ignoring unknown config key: %s", key)
            data.pop(key)

    while True:
        try:
            return AgentConfig(**data)
        except ValidationError as e:
            removed = False
            for error in e.errors():
                loc = error["loc"]
                if not loc:
                    continue
                logger.warning("Invalid config value for %s, using default", ".".join(str(p) for p in loc))
                if len(loc) > 1 and loc[0] == "llm" and isinstance(data.get("llm"), dict):
                    section, key = data["llm"], loc[1]
                else:
                    section, key = data, loc[0]
                if key in section:
                    del section[key]
                    removed = True
            if not removed:
                return AgentConfig()


class ConfigManager:
    """Manages configuration loading and saving."""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else default_home() / "config.yaml"
        self._config: Optional[AgentConfig] = None

    @property
    def home(self) -> Path:
        return self.config_path.parent

    @property
    def memory_dir(self) -> Path:
        return self.home / "memory"

    def load_config(self) -> AgentConfig:
        """Load configuration from file or create default."""
        if self._config is not None:
            return self._config

        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                if not isinstance(data, dict):
                    raise ValueError("top-level document must be a mapping")
                self._config = _strip_invalid(data)
            except (OSError, ValueError, yaml.YAMLError) as e:
                logger.warning("Could not load config from %s: %s", self.config_path, e)
                self._config = AgentConfig()
        else:
            self._config = AgentConfig()
            try:
                self.save_config()
            except OSError as e:
                logger.warning("Could not create config at %s: %s", self.config_path, e)

        # Override with environment variables
        self._apply_env_overrides()
        return self._config

    def save_config(self) -> None:
        """Save current configuration to file."""
        if self._config is None:
            return

        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        data = self._config.model_dump()
        # Keys from the environment stay out of the file
        data["llm"].pop("api_key", None)
        with open(self.config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False)

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        if not self._config:
            return

        llm = self._config.llm
        if os.getenv("JUMP_CODE_API_URL"):
            llm.provider = "gateway"
            llm.base_url = os.getenv("JUMP_CODE_API_URL")
            llm.api_key = os.getenv("JUMP_CODE_API_KEY", llm.api_key)
        elif llm.provider == "anthropic" and os.getenv("ANTHROPIC_API_KEY"):
            llm.api_key = os.getenv("ANTHROPIC_API_KEY")
        elif os.getenv("OPENAI_API_KEY"):
            llm.api_key = os.getenv("OPENAI_API_KEY")
            llm.provider = "openai"
        elif os.getenv("ANTHROPIC_API_KEY"):
            llm.api_key = os.getenv("ANTHROPIC_API_KEY")
            if llm.provider != "anthropic":
                llm.provider = "anthropic"
                llm.model = DEFAULT_MODELS["anthropic"]

        if os.getenv("OPENAI_BASE_URL") and llm.provider == "openai":
            llm.base_url = os.getenv("OPENAI_BASE_URL")

        if os.getenv("JUMP_CODE_MODEL"):
            llm.model = os.getenv("JUMP_CODE_MODEL")

    @property
    def config(self) -> AgentConfig:
        """Get current configuration."""
        if self._config is None:
            self.load_config()
        return self._config

    def set_value(self, key: str, value: Any) -> Any:
        """Set a (possibly dotted) key, validating and coercing the value.

        Raises ConfigurationError for unknown keys or values that fail
        validation. Returns the coerced value.
        """
        data = self.config.model_dump()
        parts = key.split(".")
        target = data
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                raise ConfigurationError(f"Unknown configuration key: {key}")
            target = target[part]
        if parts[-1] not in target or isinstance(target[parts[-1]], dict):
            raise ConfigurationError(f"Unknown configuration key: {key}")

        target[parts[-1]] = value
        try:
            self._config = AgentConfig(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid value for {key}: {e.errors()[0]['msg']}") from e

        self.save_config()
        result = self._config
        for part in parts:
            result = getattr(result, part)
        return result

    def reset(self) -> None:
        """Restore defaults and rewrite the configuration file."""
        self._config = AgentConfig()
        self.save_config()
        self._apply_env_overrides()


# Global config manager instance
config_manager = ConfigManager()
