"""Configuration models for Praxis.

Defaults come from environment variables; an optional TOML file at
``~/.config/praxis/config.toml`` overrides them. Front ends apply their own
overrides on top with ``Config.with_overrides``.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator

from praxis.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "praxis" / "config.toml"


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ[name])
    except (KeyError, ValueError):
        return default


class OllamaConfig(BaseModel):
    """Ollama server location and request timeout."""

    host: str = Field(default_factory=lambda: os.environ.get("OLLAMA_HOST", "localhost"))
    port: int = Field(default_factory=lambda: _env_int("OLLAMA_PORT", 11434), ge=1, le=65535)
    timeout_seconds: float = Field(default=120.0, gt=0)

    @property
    def base_url(self) -> str:
        host = self.host
        if host.startswith("http://") or host.startswith("https://"):
            return host.rstrip("/")
        return f"http://{host}:{self.port}"


class ModelConfig(BaseModel):
    """Models bound to each role."""

    orchestrator: str = Field(
        default_factory=lambda: os.environ.get("PRAXIS_ORCHESTRATOR_MODEL", "qwen3-vl:8b")
    )
    executor: str = Field(
        default_factory=lambda: os.environ.get("PRAXIS_EXECUTOR_MODEL", "qwen3:8b")
    )
    orchestrator_temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    executor_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    alternative_orchestrators: list[str] = Field(
        default_factory=lambda: ["functiongemma", "qwen2.5-coder:7b", "mistral:7b"]
    )
    alternative_executors: list[str] = Field(
        default_factory=lambda: [
            "gemma3:4b",
            "gemma3:12b",
            "qwen2.5-coder:7b",
            "codellama:7b",
            "deepseek-coder:6.7b",
        ]
    )


class AgentConfig(BaseModel):
    """Loop, history and delegation budgets."""

    max_turns: int = Field(default=10, ge=1)
    max_history: int = Field(default=1000, ge=1)
    context_window: int = Field(default=20, ge=1)
    max_depth: int = Field(default=2, ge=0)
    delegation_max_turns: int = Field(default=5, ge=1)
    delegation_context_turns: int = Field(default=4, ge=0)
    delegation_context_chars: int = Field(default=2000, ge=0)
    max_concurrent_subagents: int = Field(default=3, ge=1)
    cancel_grace_seconds: float = Field(default=2.0, ge=0.0)
    observation_max_chars: int = Field(default=4000, ge=100)
    synthesize_on_exhaustion: bool = True
    system_prompt: str | None = None
    debug: bool = Field(default_factory=lambda: _env_flag("PRAXIS_DEBUG", False))


class RouterConfig(BaseModel):
    """Retry policy for model calls."""

    max_attempts: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=0.5, ge=0.0)
    retry_backoff_max_seconds: float = Field(default=8.0, ge=0.0)
    repair_attempts: int = Field(default=1, ge=0, le=1)


class StreamingConfig(BaseModel):
    """Streaming of executor output."""

    enabled: bool = Field(default_factory=lambda: _env_flag("PRAXIS_STREAMING", True))
    print_tokens: bool = True


class BrowserConfig(BaseModel):
    """agent-browser CLI settings."""

    enabled: bool = Field(default_factory=lambda: _env_flag("PRAXIS_BROWSER_ENABLED", True))
    session_name: str = Field(
        default_factory=lambda: os.environ.get("PRAXIS_BROWSER_SESSION", "praxis")
    )
    headed: bool = Field(default_factory=lambda: _env_flag("PRAXIS_BROWSER_HEADED", False))
    timeout_seconds: float = Field(default=30.0, gt=0)
    executable: str = "agent-browser"


class Config(BaseModel):
    """Top-level Praxis configuration."""

    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    models: ModelConfig = Field(default_factory=ModelConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    router: RouterConfig = Field(default_factory=RouterConfig)
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)

    @model_validator(mode="after")
    def _check_budgets(self) -> Config:
        if self.agent.context_window > self.agent.max_history:
            self.agent.context_window = self.agent.max_history
        return self

    @classmethod
    def load(cls, path: Path | str | None = None) -> Config:
        """Load configuration from a TOML file over environment defaults.

        A missing file at the default location is not an error; a missing
        explicit path, unreadable TOML or invalid values raise ConfigError.
        """
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        if not config_path.exists():
            if path is not None:
                raise ConfigError(f"Config file not found: {config_path}")
            logger.debug(f"No config file at {config_path}, using defaults")
            return cls()

        try:
            data = tomllib.loads(config_path.read_text())
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to read config {config_path}: {e}") from e

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid config {config_path}: {e}") from e

        logger.info(f"Loaded config from {config_path}")
        return config

    def with_overrides(self, **overrides: Any) -> Config:
        """Return a copy with front-end overrides applied.

        Recognised keys: orchestrator, executor, debug, streaming, browser,
        headed, max_turns, max_history, max_depth. ``None`` values are ignored.
        """
        data = self.model_dump()
        mapping = {
            "orchestrator": ("models", "orchestrator"),
            "executor": ("models", "executor"),
            "debug": ("agent", "debug"),
            "streaming": ("streaming", "enabled"),
            "browser": ("browser", "enabled"),
            "headed": ("browser", "headed"),
            "max_turns": ("agent", "max_turns"),
            "max_history": ("agent", "max_history"),
            "max_depth": ("agent", "max_depth"),
        }
        for key, value in overrides.items():
            if value is None:
                continue
            if key not in mapping:
                raise ConfigError(f"Unknown override: {key}")
            section, field = mapping[key]
            data[section][field] = value

        try:
            return Config.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid override: {e}") from e
