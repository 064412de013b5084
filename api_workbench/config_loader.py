"""Config Loader - Loads the workbench configuration file.

Handles loading the YAML config with environment variable substitution and
building the configured Dispatcher and BackendClient from it.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

from api_workbench.backend import BackendClient
from api_workbench.dispatcher import Dispatcher


class ConfigError(Exception):
    """Raised when configuration loading fails."""


_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


class DispatchConfig(BaseModel):
    """Settings for outbound requests."""

    model_config = ConfigDict(extra="forbid")

    timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")
    follow_redirects: bool = Field(default=True, description="Follow 3xx responses")
    verify_ssl: bool = Field(default=True, description="Verify server certificates")


class BackendConfig(BaseModel):
    """Where collections and results are stored."""

    model_config = ConfigDict(extra="forbid")

    base_url: str = Field(description="Backend root; /v1 is appended")
    token: str | None = Field(default=None, description="Bearer token (supports ${ENV_VAR})")
    timeout: float = Field(default=30.0, gt=0)


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    json_output: bool = False


class WorkbenchConfig(BaseModel):
    """Top-level configuration file structure. Every section is optional."""

    model_config = ConfigDict(extra="forbid")

    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    backend: BackendConfig | None = Field(default=None)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: Path) -> WorkbenchConfig:
    """Load configuration from YAML with ${ENV_VAR} substitution."""
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    # An empty file means "all defaults"
    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigError("Config file must be a YAML mapping")

    raw_config = _substitute_env_vars(raw_config)

    try:
        return WorkbenchConfig.model_validate(raw_config)
    except Exception as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def build_dispatcher(config: WorkbenchConfig) -> Dispatcher:
    return Dispatcher(
        timeout=config.dispatch.timeout,
        follow_redirects=config.dispatch.follow_redirects,
        verify_ssl=config.dispatch.verify_ssl,
    )


def build_backend(config: WorkbenchConfig) -> BackendClient:
    if config.backend is None:
        raise ConfigError("No backend section in config")
    return BackendClient(
        config.backend.base_url,
        token=config.backend.token,
        timeout=config.backend.timeout,
    )


def _substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ${ENV_VAR} patterns in strings within data."""
    if isinstance(data, str):
        return _substitute_string(data)
    elif isinstance(data, dict):
        return {k: _substitute_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    return data


def _substitute_string(s: str) -> str:
    """Substitute ${ENV_VAR} patterns. Raises ConfigError if env var is not set."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(f"Environment variable '{var_name}' is not set")
        return value

    return _ENV_VAR_PATTERN.sub(replacer, s)
