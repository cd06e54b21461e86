"""
Configuration Management
========================

Handles loading configuration from environment variables and config files.

Sources, in increasing precedence:
1. Default values
2. Project config file (.llm-router/config.json)
3. Environment variables (a .env file in the project is loaded first)
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DATA_DIRNAME = ".llm-router"
CONFIG_FILENAME = "config.json"
BACKGROUND_DATA_DIRNAME = ".llm-router-data"

# Provider concurrency defaults
DEFAULT_CONCURRENCY = 5
DEFAULT_PROVIDER_CONCURRENCY = {
    "anthropic": 3,
    "openai": 5,
    "google": 10,
}
DEFAULT_MODEL_CONCURRENCY = {
    "claude-opus-4-5": 2,
    "gpt-5.2": 3,
    "gemini-3.0-flash": 10,
}


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() not in ("0", "false", "no", "off", "")


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", name, value)
        return default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", name, value)
        return default


@dataclass
class CacheConfig:
    """Response cache settings."""
    enabled: bool = True
    ttl_seconds: float = 1800.0
    max_size: int = 100

    @classmethod
    def from_env(cls, base: Optional["CacheConfig"] = None) -> "CacheConfig":
        """Load cache settings from environment variables on top of `base`."""
        base = base or cls()
        return cls(
            enabled=_env_bool("CACHE_ENABLED", base.enabled),
            ttl_seconds=_env_float("CACHE_TTL_SECONDS", base.ttl_seconds),
            max_size=_env_int("CACHE_MAX_SIZE", base.max_size),
        )


@dataclass
class ConcurrencyConfig:
    """
    Admission limits for background tasks.

    `default` applies to providers without an explicit limit. Models without
    an entry in `model_limits` are only bounded by their provider.
    """
    default: int = DEFAULT_CONCURRENCY
    provider_limits: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_PROVIDER_CONCURRENCY))
    model_limits: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_MODEL_CONCURRENCY))

    def limit_for_provider(self, provider: str) -> int:
        return self.provider_limits.get(provider, self.default)

    def limit_for_model(self, model: str) -> Optional[int]:
        return self.model_limits.get(model)

    @classmethod
    def from_env(cls, base: Optional["ConcurrencyConfig"] = None) -> "ConcurrencyConfig":
        """Load concurrency settings from environment variables on top of `base`."""
        base = base or cls()
        providers = dict(base.provider_limits)
        for provider in ("anthropic", "openai", "google"):
            env_name = f"CONCURRENCY_{provider.upper()}"
            if env_name in os.environ:
                providers[provider] = _env_int(env_name, providers.get(provider, base.default))
        return cls(
            default=_env_int("CONCURRENCY_DEFAULT", base.default),
            provider_limits=providers,
            model_limits=dict(base.model_limits),
        )


@dataclass
class RouterConfig:
    """llm-router configuration."""
    project_dir: Path = field(default_factory=Path.cwd)
    log_level: str = "INFO"
    cache: CacheConfig = field(default_factory=CacheConfig)
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    model_overrides: Dict[str, str] = field(default_factory=dict)
    journal_enabled: bool = True

    @property
    def data_dir(self) -> Path:
        return self.project_dir / DATA_DIRNAME

    @property
    def background_data_dir(self) -> Path:
        return self.project_dir / BACKGROUND_DATA_DIRNAME

    @classmethod
    def load(cls, project_dir: Optional[Path] = None) -> "RouterConfig":
        """
        Load configuration from multiple sources in precedence order:
        1. Environment variables
        2. Project config file (.llm-router/config.json)
        3. Default values
        """
        project_dir = Path(project_dir) if project_dir else Path.cwd()

        env_file = project_dir / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        file_config: Dict[str, Any] = {}
        config_path = project_dir / DATA_DIRNAME / CONFIG_FILENAME
        if config_path.exists():
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    file_config = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to load config file %s: %s", config_path, e)
                file_config = {}

        cache_file = file_config.get("cache", {})
        cache = CacheConfig(
            enabled=bool(cache_file.get("enabled", True)),
            ttl_seconds=float(cache_file.get("ttlSeconds", 1800.0)),
            max_size=int(cache_file.get("maxSize", 100)),
        )

        concurrency_file = file_config.get("concurrency", {})
        provider_limits = dict(DEFAULT_PROVIDER_CONCURRENCY)
        provider_limits.update(concurrency_file.get("providers", {}))
        model_limits = dict(DEFAULT_MODEL_CONCURRENCY)
        model_limits.update(concurrency_file.get("models", {}))
        concurrency = ConcurrencyConfig(
            default=int(concurrency_file.get("default", DEFAULT_CONCURRENCY)),
            provider_limits=provider_limits,
            model_limits=model_limits,
        )

        model_overrides = dict(file_config.get("models", {}))
        for key, value in os.environ.items():
            if key.startswith("MODEL_") and value:
                model_overrides[key[len("MODEL_"):].lower()] = value

        return cls(
            project_dir=project_dir,
            log_level=os.environ.get("LLM_ROUTER_LOG_LEVEL", file_config.get("logLevel", "INFO")).upper(),
            cache=CacheConfig.from_env(cache),
            concurrency=ConcurrencyConfig.from_env(concurrency),
            model_overrides=model_overrides,
            journal_enabled=bool(file_config.get("journalEnabled", True)),
        )
