"""Configuration models and loaders for homecasa-agent.

Configuration is read once at startup from the add-on options file (YAML, which
also covers the JSON `options.json` written by the Supervisor) plus environment
variable overrides. The resulting model is frozen for the process lifetime.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_CONFIG_PATH = "/data/options.json"

# Values the add-on option reader prints for unset options.
_UNSET_MARKERS = {"", "null", "none"}


class LoggingConfig(BaseModel):
    """Logging-related configuration."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    level: str = "INFO"
    json_logs: bool = Field(default=False, alias="json")


class AgentConfig(BaseModel):
    """Top-level agent configuration."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    host: str = "0.0.0.0"
    port: int = Field(default=8099, ge=1, le=65535)

    agent_api_key: str | None = None
    ha_token: str | None = None
    supervisor_token: str | None = None
    ha_base_url: str | None = None

    tunnel_token: str | None = None
    cloudflared_path: str = "cloudflared"

    request_timeout_seconds: float = Field(default=15.0, gt=0)
    socket_timeout_grace_seconds: float = Field(default=5.0, ge=0)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator(
        "agent_api_key",
        "ha_token",
        "supervisor_token",
        "ha_base_url",
        "tunnel_token",
        mode="before",
    )
    @classmethod
    def _unset_to_none(cls, value: Any) -> Any:
        """Treat blank strings and `null` markers as unset options."""
        if isinstance(value, str):
            value = value.strip()
            if value.lower() in _UNSET_MARKERS:
                return None
        return value

    @field_validator("ha_base_url")
    @classmethod
    def _validate_ha_base_url(cls, value: str | None) -> str | None:
        """Require an absolute http(s) URL for the controller override."""
        if value is None:
            return None
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.hostname:
            raise ValueError("ha_base_url must be an absolute http(s) URL, e.g. http://homeassistant:8123")
        return value

    @field_validator("logging", mode="before")
    @classmethod
    def _none_to_default_logging(cls, value: Any) -> Any:
        """Treat explicit `logging: null` as default logging settings."""
        if value is None:
            return {}
        return value


def _load_yaml(path: str | None) -> dict[str, Any]:
    """Load a YAML (or JSON) options file into a dictionary.

    Missing files are treated as empty config for environment-only deployments.
    """
    if not path:
        return {}
    cfg_path = Path(path)
    if not cfg_path.exists():
        return {}
    with cfg_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config root must be object: {path}")
    return data


def _override_from_env(data: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides on top of file configuration."""
    env_map = {
        "host": "HOMECASA_AGENT_HOST",
        "port": "PORT",
        "agent_api_key": "AGENT_API_KEY",
        "ha_token": "HA_TOKEN",
        "supervisor_token": "SUPERVISOR_TOKEN",
        "ha_base_url": "HA_BASE_URL",
        "tunnel_token": "TUNNEL_TOKEN",
        "cloudflared_path": "CLOUDFLARED_PATH",
        "request_timeout_seconds": "HOMECASA_AGENT_REQUEST_TIMEOUT_SECONDS",
        "logging.level": "HOMECASA_AGENT_LOG_LEVEL",
        "logging.json_logs": "HOMECASA_AGENT_LOG_JSON",
    }

    out = dict(data)
    out["logging"] = dict(out.get("logging") or {})

    for key, env_name in env_map.items():
        value = os.getenv(env_name)
        if value is None:
            continue

        if key == "port":
            # An empty PORT (unset add-on option) keeps the file/default value.
            if value.strip():
                out[key] = int(value)
        elif key == "request_timeout_seconds":
            out[key] = float(value)
        elif key == "logging.json_logs":
            out["logging"]["json"] = value.lower() in {"1", "true", "yes", "on"}
        elif key == "logging.level":
            out["logging"]["level"] = value
        else:
            out[key] = value

    return out


def load_config(path: str | None = None) -> AgentConfig:
    """Load, merge, and validate agent configuration."""
    final_path = path or os.getenv("HOMECASA_AGENT_CONFIG") or DEFAULT_CONFIG_PATH
    raw = _load_yaml(final_path)
    raw = _override_from_env(raw)
    return AgentConfig.model_validate(raw)
