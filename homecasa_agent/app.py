"""HTTP application for the homecasa agent.

This module exposes a small authenticated API and forwards it to the
Home Assistant Core REST API:
- `/ha/*` agent routes with validated JSON bodies,
- `/api/*` compatibility routes mirroring the native Core paths,
- `/health` without authentication.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError as ConfigValidationError

from .auth import authenticate
from .config import AgentConfig, load_config
from .credentials import resolve_upstream_target
from .errors import AgentError, RequestFailedError, UnauthorizedError, UpstreamCallError, ValidationError
from .json_helpers import secret_preview
from .logging_utils import setup_logging
from .schemas import CallServiceRequest, EntityRequest, TurnOnRequest, parse_body
from .tunnel import TunnelSupervisor
from .upstream import UpstreamClient

LOG = logging.getLogger(__name__)

AGENT_NAME = "homecasa-agent"
AGENT_VERSION = "1.0.7"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Origin, X-Requested-With, Content-Type, Accept, Authorization, X-Agent-Api-Key",
}


async def _read_json(request: Request) -> Any:
    """Decode the request body; an empty body reads as an empty object."""
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise ValidationError("Request body is not valid JSON", error="Invalid JSON body") from exc


class AgentService:
    """Runtime container for the upstream client and tunnel."""

    def __init__(self, cfg: AgentConfig) -> None:
        """Resolve the upstream target once and bind clients to it."""
        self.cfg = cfg
        self.target = resolve_upstream_target(cfg)
        self.upstream = UpstreamClient(cfg, self.target)
        self.tunnel: TunnelSupervisor | None = None
        if cfg.tunnel_token:
            self.tunnel = TunnelSupervisor(token=cfg.tunnel_token, command=cfg.cloudflared_path)

    async def start(self) -> None:
        """Log the effective setup and start the tunnel if configured."""
        self.log_startup()
        if self.tunnel:
            await self.tunnel.start()

    async def close(self) -> None:
        """Shut down the tunnel and HTTP resources."""
        if self.tunnel:
            await self.tunnel.close()
        await self.upstream.close()

    def log_startup(self) -> None:
        cfg = self.cfg
        LOG.info("HomeCasa Agent listening on %s:%s", cfg.host, cfg.port)
        LOG.info("HA Base URL: %s", self.target.base_url)
        LOG.info("Auth configured: %s", bool(cfg.agent_api_key))
        LOG.info("HA token source: %s", self.target.source)
        LOG.info("SUPERVISOR_TOKEN present: %s", bool(cfg.supervisor_token))
        LOG.info("HA_TOKEN present: %s", bool(cfg.ha_token))
        if self.target.token:
            LOG.info("Token preview: %s", secret_preview(self.target.token, max_chars=15))
        else:
            LOG.warning("No HA token configured - upstream calls will fail")
        if not cfg.agent_api_key:
            LOG.warning("No AGENT_API_KEY configured - authentication disabled")

    def health(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "agent": AGENT_NAME,
            "version": AGENT_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "ha_configured": self.target.configured,
            "token_source": self.target.source,
            "supervisor_token_present": bool(self.cfg.supervisor_token),
            "ha_token_present": bool(self.cfg.ha_token),
            "ha_base_url": self.target.base_url,
        }

    async def forward(self, method: str, path: str, body: Any | None = None, *, failure: str) -> Any:
        """Run one upstream call, reporting failures under the route's summary."""
        try:
            return await self.upstream.call(method, path, body)
        except UpstreamCallError as exc:
            LOG.error("%s: %s", failure, exc.message)
            raise RequestFailedError(exc.message, error=failure) from exc


def create_app(config_path: str | None = None, *, cfg: AgentConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance."""
    if cfg is None:
        cfg = load_config(config_path)
    setup_logging(cfg.logging)
    service = AgentService(cfg)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        """Application startup/shutdown lifecycle."""
        await service.start()
        try:
            yield
        finally:
            await service.close()

    app = FastAPI(title=AGENT_NAME, version=AGENT_VERSION, lifespan=lifespan)
    app.state.service = service

    @app.exception_handler(AgentError)
    async def agent_error_handler(_request: Request, exc: AgentError) -> JSONResponse:
        return JSONResponse(exc.to_payload(), status_code=exc.status_code)

    @app.middleware("http")
    async def require_agent_api_key(request: Request, call_next):
        """Reject requests without a valid agent API key."""
        if not authenticate(request.url.path, request.headers, service.cfg.agent_api_key):
            return JSONResponse(UnauthorizedError().to_payload(), status_code=401)
        return await call_next(request)

    # Registered last so it wraps auth: preflights skip auth, and 401s and unhandled
    # errors still carry CORS headers and the JSON error body.
    @app.middleware("http")
    async def cors_headers(request: Request, call_next):
        """Allow any origin and answer preflight requests directly."""
        if request.method == "OPTIONS":
            response = Response(status_code=200)
        else:
            try:
                response = await call_next(request)
            except Exception as exc:
                LOG.exception("unhandled error method=%s path=%s", request.method, request.url.path)
                error = AgentError(str(exc) or exc.__class__.__name__)
                response = JSONResponse(error.to_payload(), status_code=error.status_code)
        response.headers.update(CORS_HEADERS)
        return response

    @app.get("/health")
    async def health() -> JSONResponse:
        """Return agent status and whether an upstream token is configured."""
        LOG.info("Health check")
        return JSONResponse(service.health())

    @app.get("/ha/states")
    async def list_states() -> JSONResponse:
        LOG.info("Fetching HA states")
        states = await service.forward("GET", "/api/states", failure="Failed to fetch states")
        LOG.info(
            "Fetched HA states successfully count=%s",
            len(states) if isinstance(states, list) else "N/A",
        )
        return JSONResponse(states)

    @app.get("/ha/states/{entity_id}")
    async def get_state(entity_id: str) -> JSONResponse:
        LOG.info("Fetching entity state entity_id=%s", entity_id)
        state = await service.forward(
            "GET",
            f"/api/states/{quote(entity_id, safe='')}",
            failure="Failed to fetch entity state",
        )
        return JSONResponse(state)

    @app.post("/ha/call-service")
    async def call_service(request: Request) -> JSONResponse:
        body = parse_body(CallServiceRequest, await _read_json(request))
        LOG.info("Calling HA service domain=%s service=%s entity_id=%s", body.domain, body.service, body.entity_id)
        result = await service.forward(
            "POST",
            f"/api/services/{body.domain}/{body.service}",
            body.service_payload(),
            failure="Failed to call service",
        )
        return JSONResponse({"success": True, "result": result})

    @app.post("/ha/toggle")
    async def toggle(request: Request) -> JSONResponse:
        body = parse_body(EntityRequest, await _read_json(request))
        LOG.info("Toggling entity entity_id=%s domain=%s", body.entity_id, body.domain)
        result = await service.forward(
            "POST",
            f"/api/services/{body.domain}/toggle",
            body.service_payload(),
            failure="Failed to toggle",
        )
        return JSONResponse({"success": True, "result": result})

    @app.post("/ha/turn-on")
    async def turn_on(request: Request) -> JSONResponse:
        body = parse_body(TurnOnRequest, await _read_json(request))
        LOG.info(
            "Turning on entity entity_id=%s domain=%s brightness_pct=%s",
            body.entity_id,
            body.domain,
            body.brightness_pct,
        )
        result = await service.forward(
            "POST",
            f"/api/services/{body.domain}/turn_on",
            body.service_payload(),
            failure="Failed to turn on",
        )
        return JSONResponse({"success": True, "result": result})

    @app.post("/ha/turn-off")
    async def turn_off(request: Request) -> JSONResponse:
        body = parse_body(EntityRequest, await _read_json(request))
        LOG.info("Turning off entity entity_id=%s domain=%s", body.entity_id, body.domain)
        result = await service.forward(
            "POST",
            f"/api/services/{body.domain}/turn_off",
            body.service_payload(),
            failure="Failed to turn off",
        )
        return JSONResponse({"success": True, "result": result})

    @app.get("/ha/config")
    async def get_config() -> JSONResponse:
        LOG.info("Fetching HA config")
        config = await service.forward("GET", "/api/config", failure="Failed to fetch config")
        return JSONResponse(config)

    # Native Core paths, so the agent can stand in for Home Assistant directly.
    @app.get("/api/states")
    async def proxy_states() -> JSONResponse:
        LOG.info("Proxy: Fetching HA states via /api/states")
        states = await service.forward("GET", "/api/states", failure="Failed to fetch states")
        return JSONResponse(states)

    @app.get("/api/states/{entity_id}")
    async def proxy_state(entity_id: str) -> JSONResponse:
        LOG.info("Proxy: Fetching entity state entity_id=%s", entity_id)
        state = await service.forward(
            "GET",
            f"/api/states/{quote(entity_id, safe='')}",
            failure="Failed to fetch entity state",
        )
        return JSONResponse(state)

    @app.get("/api/config")
    async def proxy_config() -> JSONResponse:
        LOG.info("Proxy: Fetching HA config via /api/config")
        config = await service.forward("GET", "/api/config", failure="Failed to fetch config")
        return JSONResponse(config)

    @app.post("/api/services/{domain}/{service_name}")
    async def proxy_service(domain: str, service_name: str, request: Request) -> JSONResponse:
        payload = await _read_json(request)
        LOG.info("Proxy: Calling HA service domain=%s service=%s", domain, service_name)
        result = await service.forward(
            "POST",
            f"/api/services/{quote(domain, safe='')}/{quote(service_name, safe='')}",
            payload,
            failure="Failed to call service",
        )
        return JSONResponse(result)

    return app


def main() -> None:
    """CLI entry point that validates configuration and runs uvicorn."""

    def fail(message: str, exit_code: int = 2) -> None:
        """Print startup error and terminate process."""
        print(f"ERROR: {message}", file=sys.stderr)
        raise SystemExit(exit_code)

    parser = argparse.ArgumentParser(description="HomeCasa agent for Home Assistant")
    parser.add_argument("--config", default=None, help="Path to options file (YAML or JSON)")
    args = parser.parse_args()

    import uvicorn

    try:
        cfg = load_config(args.config)
    except ConfigValidationError as exc:
        fail(f"Invalid configuration: {exc}")
    except Exception as exc:
        fail(f"Failed to load configuration: {exc}")

    try:
        app = create_app(cfg=cfg)
    except Exception as exc:
        fail(f"Failed to create app: {exc}")

    try:
        uvicorn.run(app, host=cfg.host, port=cfg.port, log_config=None)
    except Exception as exc:
        fail(f"Server failed to start: {exc}", exit_code=1)


if __name__ == "__main__":
    main()
