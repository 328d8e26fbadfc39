"""Client for the Home Assistant Core REST API."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

import httpx

from .config import AgentConfig
from .credentials import UpstreamTarget
from .errors import ConfigurationError, NetworkError, UpstreamError, UpstreamTimeoutError
from .json_helpers import secret_preview, to_bounded_json, truncate_text

LOG = logging.getLogger(__name__)

_ERROR_BODY_PREVIEW_CHARS = 200


def _reject_constant(name: str) -> Any:
    """Refuse `NaN`/`Infinity`, which `json.loads` accepts but JSON does not define."""
    raise ValueError(f"invalid JSON constant: {name}")


def classify_response(status_code: int, text: str) -> Any:
    """Turn one upstream response into a result or an `UpstreamError`.

    Successful non-JSON bodies are returned as raw text since some Core
    endpoints answer with plain text.
    """
    try:
        parsed = json.loads(text, parse_constant=_reject_constant)
    except ValueError:
        if status_code >= 400:
            raise UpstreamError(
                f"HA returned {status_code}: {truncate_text(text, _ERROR_BODY_PREVIEW_CHARS)}",
                upstream_status=status_code,
            ) from None
        return text

    if status_code >= 400:
        message = parsed.get("message") if isinstance(parsed, dict) else None
        if message:
            raise UpstreamError(str(message), upstream_status=status_code)
        raise UpstreamError(f"HA returned {status_code}", upstream_status=status_code)
    return parsed


class UpstreamClient:
    """Thin async HTTP client bound to the process-wide upstream target."""

    def __init__(self, cfg: AgentConfig, target: UpstreamTarget) -> None:
        """Create an upstream client from agent configuration."""
        self.cfg = cfg
        self.target = target
        self._base_url = target.base_url.rstrip("/")
        self._deadline_seconds = cfg.request_timeout_seconds
        # Socket-level timeout only acts as a backstop behind the call deadline.
        self._timeout = httpx.Timeout(cfg.request_timeout_seconds + cfg.socket_timeout_grace_seconds)
        self._client = httpx.AsyncClient(timeout=self._timeout)

    async def close(self) -> None:
        """Close underlying HTTP resources."""
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        """Build authorization headers for upstream calls."""
        return {
            "Authorization": f"Bearer {self.target.token}",
            "Content-Type": "application/json",
        }

    def build_url(self, path: str) -> str:
        """Append `path` to the base URL, keeping any base path prefix such as `/core`."""
        if not path.startswith("/"):
            raise ValueError(f"upstream path must start with '/': {path!r}")
        return self._base_url + path

    async def _send(self, method: str, url: str, body: Any | None) -> httpx.Response:
        if body is None:
            return await self._client.request(method, url, headers=self._headers())
        return await self._client.request(method, url, headers=self._headers(), json=body)

    async def call(self, method: str, path: str, body: Any | None = None) -> Any:
        """Perform exactly one upstream request and return the parsed result."""
        if not self.target.token:
            raise ConfigurationError("No HA token configured")

        url = self.build_url(path)
        started = time.monotonic()
        LOG.debug(
            "forwarding upstream request method=%s path=%s url=%s source=%s token=%s payload=%s",
            method,
            path,
            url,
            self.target.source,
            secret_preview(self.target.token),
            to_bounded_json(body),
            extra={"method": method, "path": path, "token_source": self.target.source},
        )

        try:
            response = await asyncio.wait_for(self._send(method, url, body), timeout=self._deadline_seconds)
        except asyncio.TimeoutError as exc:
            deadline_ms = int(self._deadline_seconds * 1000)
            LOG.error(
                "upstream request timed out method=%s path=%s after=%sms",
                method,
                path,
                deadline_ms,
                extra={"method": method, "path": path, "elapsed_ms": deadline_ms},
            )
            raise UpstreamTimeoutError(f"Request timeout after {deadline_ms}ms") from exc
        except httpx.TimeoutException as exc:
            LOG.error("upstream socket timeout method=%s path=%s", method, path, extra={"method": method, "path": path})
            raise UpstreamTimeoutError("Socket timeout") from exc
        except httpx.RequestError as exc:
            LOG.error(
                "upstream request error method=%s path=%s error=%s",
                method,
                path,
                exc,
                extra={"method": method, "path": path},
            )
            raise NetworkError(str(exc) or exc.__class__.__name__) from exc

        text = response.text
        elapsed_ms = int((time.monotonic() - started) * 1000)
        LOG.debug(
            "upstream response complete status=%s path=%s elapsed=%sms length=%s",
            response.status_code,
            path,
            elapsed_ms,
            len(text),
            extra={
                "method": method,
                "path": path,
                "upstream_status": response.status_code,
                "elapsed_ms": elapsed_ms,
            },
        )
        return classify_response(response.status_code, text)
