"""Configuration loading for docsynth (.docsynth.yml)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import yaml

from .logging import LEVELS

CONFIG_FILENAME = ".docsynth.yml"

DEFAULT_GITHUB_API_URL = "https://api.github.com"
DEFAULT_CACHE_PATH = Path(".docsynth") / "cache.json"

_GITHUB_TOKEN_ENV_KEYS = ("DOCSYNTH_GITHUB_TOKEN", "GITHUB_TOKEN")


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed."""


@dataclass
class GitHubConfig:
    """Repository content provider settings."""

    token: Optional[str] = None
    api_url: str = DEFAULT_GITHUB_API_URL
    throttle_ms: int = 200
    request_timeout: float = 30.0


@dataclass
class LLMConfig:
    """Generative-text provider settings."""

    provider: str = "gemini"
    model: Optional[str] = None
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: Optional[float] = None
    request_timeout: float = 60.0
    throttle_ms: int = 1000


@dataclass
class CacheConfig:
    path: Optional[Path] = None


@dataclass
class GenerationConfig:
    goal_prompt: Optional[str] = None


@dataclass
class LoggingConfig:
    level: str = "info"
    file: Optional[Path] = None


@dataclass
class DocSynthConfig:
    """Represents the settings defined in .docsynth.yml."""

    root: Path
    github: GitHubConfig = field(default_factory=GitHubConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(config_path: Path | None = None) -> DocSynthConfig:
    """Load configuration from disk, falling back to defaults when no file exists."""
    config_file = _resolve_config_path(config_path or Path.cwd())
    root = config_file.parent.resolve()

    data: Dict[str, Any] = {}
    if config_file.exists():
        data = _read_config(config_file)
        if not isinstance(data, dict):
            raise ConfigError(f"{config_file.name} must contain a mapping at the root")

    github_data = _as_dict(data.get("github"))
    github = GitHubConfig(
        token=_as_str(github_data.get("token")) or _first_env_value(_GITHUB_TOKEN_ENV_KEYS),
        api_url=_as_str(github_data.get("api_url")) or DEFAULT_GITHUB_API_URL,
        throttle_ms=_as_non_negative_int(github_data.get("throttle_ms"), 200),
        request_timeout=_as_float(github_data.get("request_timeout")) or 30.0,
    )

    llm_data = _as_dict(data.get("llm"))
    provider = (_as_str(llm_data.get("provider")) or "gemini").lower()
    if provider not in {"gemini", "openai"}:
        raise ConfigError(f"Unsupported llm.provider '{provider}'. Use 'gemini' or 'openai'.")
    llm = LLMConfig(
        provider=provider,
        model=_as_str(llm_data.get("model")),
        api_key=_as_str(llm_data.get("api_key")),
        base_url=_as_str(llm_data.get("base_url")),
        temperature=_as_float(llm_data.get("temperature")),
        request_timeout=_as_float(llm_data.get("request_timeout")) or 60.0,
        throttle_ms=_as_non_negative_int(llm_data.get("throttle_ms"), 1000),
    )

    cache_data = _as_dict(data.get("cache"))
    cache_path_str = _as_str(cache_data.get("path"))
    cache_path = _resolve_under(root, cache_path_str) if cache_path_str else root / DEFAULT_CACHE_PATH
    cache = CacheConfig(path=cache_path)

    generation_data = _as_dict(data.get("generation"))
    generation = GenerationConfig(goal_prompt=_as_str(generation_data.get("goal_prompt")))

    logging_data = _as_dict(data.get("logging"))
    level = (_as_str(logging_data.get("level")) or "info").lower()
    if level not in LEVELS:
        choices = ", ".join(LEVELS)
        raise ConfigError(f"Unsupported logging.level '{level}'. Use one of: {choices}.")
    log_file_str = _as_str(logging_data.get("file"))
    log_file = _resolve_under(root, log_file_str) if log_file_str else None
    logging_config = LoggingConfig(level=level, file=log_file)

    return DocSynthConfig(
        root=root,
        github=github,
        llm=llm,
        cache=cache,
        generation=generation,
        logging=logging_config,
    )


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded if loaded is not None else {}


def _resolve_under(root: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else root / path


def _first_env_value(keys: Sequence[str]) -> Optional[str]:
    for key in keys:
        value = os.getenv(key)
        if value:
            return value
    return None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (str, int, float)):
        text = str(value).strip()
        return text or None
    return None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_non_negative_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value >= 0 else default
    if isinstance(value, str):
        try:
            parsed = int(value)
        except ValueError:
            return default
        return parsed if parsed >= 0 else default
    return default


__all__ = [
    "CacheConfig",
    "ConfigError",
    "DocSynthConfig",
    "GenerationConfig",
    "GitHubConfig",
    "LLMConfig",
    "LoggingConfig",
    "load_config",
]
