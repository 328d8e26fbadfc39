"""Error taxonomy for the agent.

Every error renders as `{"error": <summary>, "message": <detail>}`. Upstream
failures of any kind surface as HTTP 500.
"""

from __future__ import annotations

from typing import Any


class AgentError(Exception):
    """Base class for errors reported to agent callers."""

    status_code = 500
    error = "Internal error"

    def __init__(self, message: str, *, error: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error

    def to_payload(self) -> dict[str, Any]:
        """Build the JSON error body."""
        return {"error": self.error, "message": self.message}


class UnauthorizedError(AgentError):
    """Inbound API key missing or wrong."""

    status_code = 401
    error = "Unauthorized"

    def __init__(self, message: str = "Invalid or missing API key") -> None:
        super().__init__(message)


class ValidationError(AgentError):
    """Request body is malformed or misses required fields."""

    status_code = 400
    error = "Invalid request"


class RequestFailedError(AgentError):
    """A route could not complete its upstream call."""

    status_code = 500


class UpstreamCallError(AgentError):
    """Base class for failures of one upstream call."""

    error = "Upstream request failed"


class ConfigurationError(UpstreamCallError):
    """No upstream token is configured; no network attempt was made."""

    error = "Configuration error"


class UpstreamTimeoutError(UpstreamCallError):
    """The upstream did not deliver a full response within the deadline."""

    error = "Upstream timeout"


class NetworkError(UpstreamCallError):
    """Connection-level failure talking to the upstream."""

    error = "Network error"


class UpstreamError(UpstreamCallError):
    """The upstream answered with a status >= 400."""

    error = "Upstream error"

    def __init__(self, message: str, *, upstream_status: int) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status
