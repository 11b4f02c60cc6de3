"""
Configuration loader — YAML file + environment variable overrides,
LLM profiles, and the MCP server config with ``${env:VAR}`` expansion.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from ..core.error_catalog import ConfigError, ErrorCode

logger = logging.getLogger(__name__)

# Context window defaults per backend, used when a profile leaves it unset
DEFAULT_CONTEXT_WINDOWS = {
    "openai": 128000,
    "anthropic": 200000,
    "gemini": 1000000,
    "ollama": 32000,
}
FALLBACK_CONTEXT_WINDOW = 128000

_ENV_PLACEHOLDER = re.compile(r"\$\{env:([^}]*)\}")


class Config:
    """Configuration container with dot-access and env var support."""

    def __init__(self, data: dict):
        self._data = data

    def get(self, key: str, default: Any = None) -> Any:
        """Get a config value by dot-separated key path."""
        keys = key.split(".")
        value = self._data
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default
            if value is None:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """Set a config value by dot-separated key path."""
        keys = key.split(".")
        d = self._data
        for k in keys[:-1]:
            d = d.setdefault(k, {})
        d[keys[-1]] = value

    @property
    def raw(self) -> dict:
        return self._data

    def __repr__(self) -> str:
        return f"Config(profiles={list((self._data.get('profiles') or {}).keys())})"


# ── LLM profiles ──────────────────────────────────────────────────

@dataclass
class LLMProfile:
    """Connection and tuning settings for one model backend."""
    backend: str = "openai"
    model: str = "gpt-4o-mini"
    endpoint: str = ""
    api_key: str = ""
    temperature: float = 0.7
    max_tokens: int = 1000
    context_window_size: Optional[int] = None
    summarize_threshold: float = 0.7
    max_retries: int = 3
    retry_backoff_base: float = 2.0

    def get_context_window_size(self) -> int:
        if self.context_window_size:
            return self.context_window_size
        return DEFAULT_CONTEXT_WINDOWS.get(self.backend, FALLBACK_CONTEXT_WINDOW)

    @classmethod
    def from_dict(cls, data: dict) -> "LLMProfile":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.debug(f"Ignoring unknown profile keys: {sorted(unknown)}")
        profile = cls(**{k: v for k, v in data.items() if k in known and v is not None})
        profile.validate()
        return profile

    def validate(self) -> None:
        if not self.backend:
            raise ConfigError("LLM profile has no backend")
        if not 0.0 <= float(self.summarize_threshold) <= 1.0:
            raise ConfigError(f"summarize_threshold must be within [0, 1], got {self.summarize_threshold}")
        if int(self.max_retries) < 0:
            raise ConfigError(f"max_retries must be >= 0, got {self.max_retries}")

    def to_dict(self) -> dict:
        data = asdict(self)
        data["api_key"] = "***" if self.api_key else ""
        return data


# ── Main config ───────────────────────────────────────────────────

def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from YAML file with env var overrides.

    Priority (highest to lowest):
    1. Environment variables
    2. User config file (if provided)
    3. Default config

    Env var mapping (profile keys apply to the default profile):
    - AGENTIC_DEFAULT_PROFILE → default
    - AGENTIC_LLM_BACKEND → profiles.<default>.backend
    - AGENTIC_LLM_MODEL → profiles.<default>.model
    - AGENTIC_LLM_ENDPOINT → profiles.<default>.endpoint
    - AGENTIC_CONTEXT_WINDOW → profiles.<default>.context_window_size
    - AGENTIC_SUMMARIZE_THRESHOLD → profiles.<default>.summarize_threshold
    - OPENAI_API_KEY → profiles.openai.api_key
    """
    default_path = Path(__file__).parent / "default_config.yaml"
    data = _read_yaml(default_path)

    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {config_path}", code=ErrorCode.CONFIG_FILE_NOT_FOUND)
        data = _deep_merge(data, _read_yaml(path))

    config = Config(data)

    default_profile = os.getenv("AGENTIC_DEFAULT_PROFILE")
    if default_profile:
        config.set("default", default_profile)
    profile_key = f"profiles.{config.get('default', 'openai')}"

    env_mappings = {
        "AGENTIC_LLM_BACKEND": (f"{profile_key}.backend", str),
        "AGENTIC_LLM_MODEL": (f"{profile_key}.model", str),
        "AGENTIC_LLM_ENDPOINT": (f"{profile_key}.endpoint", str),
        "AGENTIC_CONTEXT_WINDOW": (f"{profile_key}.context_window_size", int),
        "AGENTIC_SUMMARIZE_THRESHOLD": (f"{profile_key}.summarize_threshold", float),
        "OPENAI_API_KEY": ("profiles.openai.api_key", str),
    }
    for env_key, (config_key, convert) in env_mappings.items():
        env_val = os.getenv(env_key)
        if env_val is None:
            continue
        try:
            config.set(config_key, convert(env_val))
        except ValueError as e:
            raise ConfigError(f"Invalid value for {env_key}: {env_val!r}") from e

    return config


def get_profile(config: Config, name: Optional[str] = None) -> LLMProfile:
    """Build the LLMProfile ``name`` (default: the config's ``default`` profile)."""
    name = name or config.get("default", "openai")
    data = config.get(f"profiles.{name}")
    if not isinstance(data, dict):
        available = sorted((config.get("profiles") or {}).keys())
        raise ConfigError(f"Unknown LLM profile: {name}. Available: {available}")
    try:
        return LLMProfile.from_dict(data)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid LLM profile '{name}': {e}") from e


# ── MCP server config ─────────────────────────────────────────────

def expand_env_vars(value: str) -> str:
    """
    Replace ``${env:NAME}`` placeholders with environment values.

    Missing variables expand to "". An unterminated placeholder is left as-is.
    """
    return _ENV_PLACEHOLDER.sub(lambda m: os.environ.get(m.group(1), ""), value)


def load_mcp_config(config_path: Optional[str]) -> dict[str, dict]:
    """
    Read a Claude Desktop style ``{"mcpServers": {name: {command, args, env}}}``
    file and return ``name -> {command, args, env}`` with placeholders expanded.

    A missing file yields an empty mapping.
    """
    if not config_path or not Path(config_path).exists():
        logger.info(f"No MCP config at {config_path}, starting without tool servers")
        return {}

    try:
        with open(config_path, encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid MCP config {config_path}: {e}") from e

    servers = raw.get("mcpServers", {}) if isinstance(raw, dict) else None
    if not isinstance(servers, dict):
        raise ConfigError(f"MCP config {config_path} has no 'mcpServers' object")

    result = {}
    for name, server in servers.items():
        if not isinstance(server, dict) or not isinstance(server.get("command"), str):
            raise ConfigError(f"MCP server '{name}' needs a string 'command'")
        result[name] = {
            "command": expand_env_vars(server["command"]),
            "args": [expand_env_vars(str(a)) for a in server.get("args") or []],
            "env": {k: expand_env_vars(str(v)) for k, v in (server.get("env") or {}).items()},
        }
    return result


# ── Helpers ───────────────────────────────────────────────────────

def _read_yaml(path: Path) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay dict into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result
