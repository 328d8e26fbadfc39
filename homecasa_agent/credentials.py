"""Resolve which Home Assistant token and base URL the agent talks to."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from .config import AgentConfig

# The Supervisor proxies the Core API under /core for add-ons.
SUPERVISOR_BASE_URL = "http://supervisor/core"
# Hostname of Core inside the add-on Docker network.
DEFAULT_HA_BASE_URL = "http://homeassistant:8123"

TokenSource = Literal["SUPERVISOR_TOKEN", "HA_TOKEN", "NONE"]


@dataclass(frozen=True)
class UpstreamTarget:
    """Token and base URL used for every upstream call of this process."""

    token: str | None
    base_url: str
    source: TokenSource

    @property
    def configured(self) -> bool:
        return bool(self.token)


def resolve_upstream_target(cfg: AgentConfig) -> UpstreamTarget:
    """Pick the effective upstream credential.

    The supervisor token always wins and pins the base URL to the Supervisor
    proxy. A long-lived token uses the configured override or the default
    direct address.
    """
    if cfg.supervisor_token:
        return UpstreamTarget(
            token=cfg.supervisor_token,
            base_url=SUPERVISOR_BASE_URL,
            source="SUPERVISOR_TOKEN",
        )

    base_url = (cfg.ha_base_url or DEFAULT_HA_BASE_URL).rstrip("/")
    if cfg.ha_token:
        return UpstreamTarget(token=cfg.ha_token, base_url=base_url, source="HA_TOKEN")
    return UpstreamTarget(token=None, base_url=base_url, source="NONE")
