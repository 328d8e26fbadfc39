"""Minimal stand-in for the Home Assistant Core REST API.

Run with `uvicorn examples.mock_ha_server:app --port 8123` and point the agent
at it with `HA_BASE_URL=http://127.0.0.1:8123 HA_TOKEN=dev`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

app = FastAPI(title="mock-home-assistant")

_STATES: dict[str, dict[str, Any]] = {
    "light.kitchen": {"state": "off", "attributes": {"friendly_name": "Kitchen"}},
    "switch.fan": {"state": "on", "attributes": {"friendly_name": "Fan"}},
    "sensor.outdoor_temp": {"state": "12.4", "attributes": {"unit_of_measurement": "°C"}},
}


def _state_object(entity_id: str) -> dict[str, Any]:
    entry = _STATES[entity_id]
    now = datetime.now(timezone.utc).isoformat()
    return {
        "entity_id": entity_id,
        "state": entry["state"],
        "attributes": entry["attributes"],
        "last_changed": now,
        "last_updated": now,
    }


def _unauthorized(request: Request) -> JSONResponse | None:
    if not request.headers.get("authorization", "").startswith("Bearer "):
        return JSONResponse({"message": "Unauthorized"}, status_code=401)
    return None


@app.get("/api/")
async def api_root(request: Request):
    return _unauthorized(request) or PlainTextResponse("API running.")


@app.get("/api/config")
async def config(request: Request):
    return _unauthorized(request) or JSONResponse(
        {"location_name": "Mock Home", "version": "2024.6.0", "time_zone": "Europe/Berlin"}
    )


@app.get("/api/states")
async def states(request: Request):
    return _unauthorized(request) or JSONResponse([_state_object(entity_id) for entity_id in _STATES])


@app.get("/api/states/{entity_id}")
async def state(entity_id: str, request: Request):
    denied = _unauthorized(request)
    if denied:
        return denied
    if entity_id not in _STATES:
        return JSONResponse({"message": "Entity not found."}, status_code=404)
    return JSONResponse(_state_object(entity_id))


@app.post("/api/services/{domain}/{service}")
async def call_service(domain: str, service: str, request: Request):
    denied = _unauthorized(request)
    if denied:
        return denied
    payload = await request.json()
    entity_id = payload.get("entity_id")
    if not isinstance(entity_id, str) or entity_id not in _STATES or not entity_id.startswith(f"{domain}."):
        return JSONResponse([])

    entry = _STATES[entity_id]
    if service == "turn_on":
        entry["state"] = "on"
        if "brightness" in payload:
            entry["attributes"]["brightness"] = payload["brightness"]
        elif "brightness_pct" in payload:
            entry["attributes"]["brightness"] = round(255 * payload["brightness_pct"] / 100)
    elif service == "turn_off":
        entry["state"] = "off"
    elif service == "toggle":
        entry["state"] = "off" if entry["state"] == "on" else "on"
    return JSONResponse([_state_object(entity_id)])
