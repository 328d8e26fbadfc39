"""Inbound API key authentication."""

from __future__ import annotations

import hmac
import logging
from typing import Mapping

from .json_helpers import secret_preview

LOG = logging.getLogger(__name__)

API_KEY_HEADER = "x-agent-api-key"
PUBLIC_PATHS = frozenset({"/health"})


def _extract_bearer_token(auth_header: str | None) -> str | None:
    """Extract bearer token from an Authorization header value if present."""
    if not auth_header:
        return None
    parts = auth_header.strip().split(" ", 1)
    if len(parts) != 2:
        return None
    scheme, token = parts[0].lower(), parts[1].strip()
    if scheme != "bearer" or not token:
        return None
    return token


def extract_api_key(headers: Mapping[str, str]) -> str | None:
    """Return the caller's key, preferring the dedicated header over bearer auth.

    `headers` must be case-insensitive (Starlette `Headers`) or use lowercase names.
    """
    dedicated = headers.get(API_KEY_HEADER)
    if dedicated:
        return dedicated
    return _extract_bearer_token(headers.get("authorization"))


def authenticate(path: str, headers: Mapping[str, str], api_key: str | None) -> bool:
    """Decide whether one inbound request may proceed."""
    if path in PUBLIC_PATHS:
        return True
    if not api_key:
        LOG.debug("no agent_api_key configured, allowing path=%s", path)
        return True

    provided = extract_api_key(headers)
    if provided is not None and hmac.compare_digest(provided.encode("utf-8"), api_key.encode("utf-8")):
        return True

    LOG.warning("invalid API key path=%s provided=%s", path, secret_preview(provided), extra={"path": path})
    return False
