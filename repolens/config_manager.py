"""Configuration manager for RepoLens using TOML files."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Mapping

import toml

from .config import BASE_DIR

logger = logging.getLogger(__name__)

CONFIG_FILE = BASE_DIR / "config.toml"


# Default configurations for each provider
DEFAULT_CONFIGS = {
    "ollama": {
        "provider": "ollama",
        "model": "qwen2.5-coder:7b",
        "endpoint": "http://127.0.0.1:11434/api/chat",
    },
    "groq": {
        "provider": "groq",
        "model": "llama-3.3-70b-versatile",
        "api_key": "",
        "endpoint": "https://api.groq.com/openai/v1/chat/completions",
    },
    "openai": {
        "provider": "openai",
        "model": "gpt-4o-mini",
        "api_key": "",
        "endpoint": "https://api.openai.com/v1/chat/completions",
    },
    "anthropic": {
        "provider": "anthropic",
        "model": "claude-3-5-sonnet-20241022",
        "api_key": "",
        "endpoint": "https://api.anthropic.com/v1/messages",
    },
    "gemini": {
        "provider": "gemini",
        "model": "gemini-2.0-flash",
        "api_key": "",
    },
    "openrouter": {
        "provider": "openrouter",
        "model": "google/gemini-2.0-flash-exp:free",
        "api_key": "",
        "endpoint": "https://openrouter.ai/api/v1/chat/completions",
    },
}

ALL_PROVIDERS = list(DEFAULT_CONFIGS)

# Environment variables that override a stored API key
API_KEY_ENV = {
    "groq": "GROQ_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}


def _default_workers() -> int:
    return max(2, (os.cpu_count() or 1) - 1)


@dataclass
class ReviewSettings:
    """Tunables for a review run, read from the ``[review]`` section."""

    workers: int = field(default_factory=_default_workers)
    batch_timeout: float = 600.0
    result_timeout: float = 30.0
    max_chars: int = 32_000
    max_file_size: int = 1_000_000
    max_eval_bytes: int = 200_000
    tokens_per_minute: int = 60_000
    max_tokens: int = 1024
    temperature: float = 0.2

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ReviewSettings":
        settings = cls()
        for f in fields(cls):
            if f.name not in data:
                continue
            current = getattr(settings, f.name)
            try:
                setattr(settings, f.name, type(current)(data[f.name]))
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid [review] value %s=%r", f.name, data[f.name])
        return settings


def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections)."""
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Could not read %s: %s", CONFIG_FILE, exc)
        return {}


def _save_full_config(config: Dict[str, Any]) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    try:
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w") as f:
            toml.dump(config, f)
        return True
    except OSError as exc:
        logger.warning("Could not write %s: %s", CONFIG_FILE, exc)
        return False


def env_api_key(provider: str) -> str:
    """API key from ``REPOLENS_API_KEY`` or the provider's own variable, empty if neither is set."""
    return os.environ.get("REPOLENS_API_KEY") or os.environ.get(API_KEY_ENV.get(provider, ""), "") or ""


def load_config() -> Dict[str, Any]:
    """Load the ``[llm]`` section.

    Returns:
        Configuration dictionary with provider settings.
        Falls back to Ollama defaults if the file or section is missing.
        ``REPOLENS_API_KEY`` or the provider's own key variable wins over
        a stored key.
    """
    config = load_full_config().get("llm") or DEFAULT_CONFIGS["ollama"].copy()
    provider = config.get("provider", "ollama")
    env_key = env_api_key(provider)
    if env_key:
        config = {**config, "api_key": env_key}
    return config


def save_config(provider: str, model: str, api_key: str = "", endpoint: str = "") -> bool:
    """Save LLM configuration to TOML file.

    Preserves other sections (e.g. ``[review]``) in the file.
    """
    config = load_full_config()

    config["llm"] = {
        "provider": provider,
        "model": model,
    }
    if api_key:
        config["llm"]["api_key"] = api_key
    if endpoint:
        config["llm"]["endpoint"] = endpoint

    return _save_full_config(config)


def clear_config() -> bool:
    """Remove the ``[llm]`` section, resetting to Ollama defaults."""
    config = load_full_config()
    config.pop("llm", None)
    return _save_full_config(config)


def get_provider_config(provider: str) -> Dict[str, Any]:
    """Get default configuration for a specific provider."""
    return DEFAULT_CONFIGS.get(provider, DEFAULT_CONFIGS["ollama"]).copy()


def load_review_settings() -> ReviewSettings:
    """Build :class:`ReviewSettings` from the ``[review]`` section."""
    return ReviewSettings.from_mapping(load_full_config().get("review", {}))
