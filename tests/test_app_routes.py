import json
import logging

import httpx
from fastapi.testclient import TestClient

from homecasa_agent.app import AgentService, create_app
from homecasa_agent.config import AgentConfig

KEY = "agent-key-0123456789"


class _RecordingUpstream:
    """Fake Home Assistant answering every request with one canned response."""

    def __init__(self, status_code: int = 200, payload: object = None, text: str | None = None) -> None:
        self.status_code = status_code
        self.payload = [] if payload is None else payload
        self.text = text
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text is not None:
            return httpx.Response(self.status_code, text=self.text)
        return httpx.Response(self.status_code, json=self.payload)

    def last_body(self) -> object:
        return json.loads(self.requests[-1].content)


def _make_client(upstream: _RecordingUpstream | None = None, **overrides: object) -> TestClient:
    raw = {"ha_token": "llat-token-value", "agent_api_key": KEY}
    raw.update(overrides)
    app = create_app(cfg=AgentConfig.model_validate(raw))
    if upstream is not None:
        app.state.service.upstream._client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    return TestClient(app)


def _auth() -> dict[str, str]:
    return {"X-Agent-Api-Key": KEY}


def test_health_without_key_or_configuration() -> None:
    client = _make_client(agent_api_key=None, ha_token=None)
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["ha_configured"] is False
    assert body["token_source"] == "NONE"


def test_health_is_open_even_when_key_is_configured() -> None:
    response = _make_client().get("/health")
    assert response.status_code == 200
    assert response.json()["ha_configured"] is True


def test_missing_key_is_rejected_with_401_and_cors_headers() -> None:
    upstream = _RecordingUpstream()
    response = _make_client(upstream).get("/ha/states")
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized", "message": "Invalid or missing API key"}
    assert response.headers["access-control-allow-origin"] == "*"
    assert upstream.requests == []


def test_bearer_key_is_accepted() -> None:
    upstream = _RecordingUpstream(payload=[{"entity_id": "light.kitchen", "state": "on"}])
    response = _make_client(upstream).get("/ha/states", headers={"Authorization": f"Bearer {KEY}"})
    assert response.status_code == 200
    assert response.json() == [{"entity_id": "light.kitchen", "state": "on"}]
    assert upstream.requests[0].url.path == "/api/states"


def test_options_preflight_short_circuits_without_auth() -> None:
    upstream = _RecordingUpstream()
    response = _make_client(upstream).options("/ha/turn-on")
    assert response.status_code == 200
    assert response.content == b""
    assert "OPTIONS" in response.headers["access-control-allow-methods"]
    assert "X-Agent-Api-Key" in response.headers["access-control-allow-headers"]
    assert upstream.requests == []


def test_get_state_forwards_entity_id() -> None:
    upstream = _RecordingUpstream(payload={"entity_id": "sensor.temp", "state": "21.5"})
    response = _make_client(upstream).get("/ha/states/sensor.temp", headers=_auth())
    assert response.json() == {"entity_id": "sensor.temp", "state": "21.5"}
    assert upstream.requests[0].url.path == "/api/states/sensor.temp"


def test_turn_on_forwards_only_supplied_brightness_fields() -> None:
    upstream = _RecordingUpstream(payload=[{"entity_id": "light.kitchen", "state": "on"}])
    response = _make_client(upstream).post(
        "/ha/turn-on",
        json={"entity_id": "light.kitchen", "brightness_pct": 50},
        headers=_auth(),
    )
    assert response.status_code == 200
    assert response.json() == {"success": True, "result": [{"entity_id": "light.kitchen", "state": "on"}]}
    request = upstream.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/api/services/light/turn_on"
    assert upstream.last_body() == {"entity_id": "light.kitchen", "brightness_pct": 50}


def test_toggle_derives_domain_from_entity_id() -> None:
    upstream = _RecordingUpstream()
    response = _make_client(upstream).post("/ha/toggle", json={"entity_id": "switch.fan"}, headers=_auth())
    assert response.status_code == 200
    assert upstream.requests[0].url.path == "/api/services/switch/toggle"
    assert upstream.last_body() == {"entity_id": "switch.fan"}


def test_turn_off_posts_turn_off_service() -> None:
    upstream = _RecordingUpstream()
    _make_client(upstream).post("/ha/turn-off", json={"entity_id": "cover.garage"}, headers=_auth())
    assert upstream.requests[0].url.path == "/api/services/cover/turn_off"


def test_call_service_merges_service_data_and_entity() -> None:
    upstream = _RecordingUpstream()
    response = _make_client(upstream).post(
        "/ha/call-service",
        json={
            "domain": "climate",
            "service": "set_temperature",
            "entity_id": "climate.living_room",
            "service_data": {"temperature": 21},
        },
        headers=_auth(),
    )
    assert response.json() == {"success": True, "result": []}
    assert upstream.requests[0].url.path == "/api/services/climate/set_temperature"
    assert upstream.last_body() == {"temperature": 21, "entity_id": "climate.living_room"}


def test_call_service_missing_service_is_400_without_upstream_call() -> None:
    upstream = _RecordingUpstream()
    response = _make_client(upstream).post("/ha/call-service", json={"domain": "light"}, headers=_auth())
    assert response.status_code == 400
    assert response.json()["error"] == "Missing domain or service"
    assert upstream.requests == []


def test_missing_entity_id_is_400() -> None:
    upstream = _RecordingUpstream()
    response = _make_client(upstream).post("/ha/toggle", json={}, headers=_auth())
    assert response.status_code == 400
    assert response.json()["error"] == "Missing entity_id"
    assert upstream.requests == []


def test_entity_id_without_domain_separator_is_400() -> None:
    upstream = _RecordingUpstream()
    response = _make_client(upstream).post("/ha/turn-on", json={"entity_id": "kitchen"}, headers=_auth())
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid entity_id"
    assert upstream.requests == []


def test_unknown_field_is_400() -> None:
    upstream = _RecordingUpstream()
    response = _make_client(upstream).post(
        "/ha/turn-off",
        json={"entity_id": "light.kitchen", "transition": 3},
        headers=_auth(),
    )
    assert response.status_code == 400
    assert upstream.requests == []


def test_malformed_json_body_is_400() -> None:
    response = _make_client(_RecordingUpstream()).post(
        "/ha/toggle",
        content=b"{not json",
        headers={**_auth(), "Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid JSON body"


def test_upstream_error_message_is_returned_as_500() -> None:
    upstream = _RecordingUpstream(status_code=404, payload={"message": "Entity not found"})
    response = _make_client(upstream).get("/ha/states/light.missing", headers=_auth())
    assert response.status_code == 500
    assert response.json() == {"error": "Failed to fetch entity state", "message": "Entity not found"}


def test_missing_upstream_token_is_500_configuration_error() -> None:
    upstream = _RecordingUpstream()
    response = _make_client(upstream, ha_token=None).get("/ha/config", headers=_auth())
    assert response.status_code == 500
    assert response.json() == {"error": "Failed to fetch config", "message": "No HA token configured"}
    assert upstream.requests == []


def test_native_service_path_is_forwarded_one_to_one() -> None:
    upstream = _RecordingUpstream(payload=[{"entity_id": "scene.movie"}])
    response = _make_client(upstream).post(
        "/api/services/scene/turn_on",
        json={"entity_id": "scene.movie"},
        headers=_auth(),
    )
    assert response.status_code == 200
    assert response.json() == [{"entity_id": "scene.movie"}]
    assert upstream.requests[0].url.path == "/api/services/scene/turn_on"
    assert upstream.last_body() == {"entity_id": "scene.movie"}


def test_native_config_path_returns_raw_upstream_object() -> None:
    upstream = _RecordingUpstream(payload={"location_name": "Home", "version": "2024.6.0"})
    response = _make_client(upstream).get("/api/config", headers=_auth())
    assert response.json() == {"location_name": "Home", "version": "2024.6.0"}


def test_open_mode_forwards_without_key() -> None:
    upstream = _RecordingUpstream(payload={"location_name": "Home"})
    response = _make_client(upstream, agent_api_key=None).get("/ha/config")
    assert response.status_code == 200
    assert upstream.requests[0].headers["authorization"] == "Bearer llat-token-value"


def test_entity_id_with_url_characters_in_domain_is_400() -> None:
    upstream = _RecordingUpstream()
    client = _make_client(upstream)

    toggle = client.post("/ha/toggle", json={"entity_id": "script?x=.kitchen"}, headers=_auth())
    turn_off = client.post("/ha/turn-off", json={"entity_id": "light#.kitchen"}, headers=_auth())

    assert toggle.status_code == 400
    assert toggle.json()["error"] == "Invalid entity_id"
    assert turn_off.status_code == 400
    assert upstream.requests == []


def test_state_path_parameter_is_percent_encoded_upstream() -> None:
    upstream = _RecordingUpstream(payload={"entity_id": "sensor.x"})
    response = _make_client(upstream).get("/ha/states/sensor.x%3Fy=1", headers=_auth())
    assert response.status_code == 200
    request = upstream.requests[0]
    assert request.url.raw_path == b"/api/states/sensor.x%3Fy%3D1"
    assert request.url.query == b""


def test_success_body_with_nan_is_returned_as_raw_text() -> None:
    upstream = _RecordingUpstream(text='{"state": NaN}')
    response = _make_client(upstream).get("/ha/states/sensor.x", headers=_auth())
    assert response.status_code == 200
    assert response.json() == '{"state": NaN}'


def test_unexpected_error_is_rendered_as_json_with_cors_headers(monkeypatch) -> None:
    client = _make_client()

    async def broken_call(*_args, **_kwargs) -> object:
        raise RuntimeError("boom")

    monkeypatch.setattr(client.app.state.service.upstream, "call", broken_call)
    response = client.get("/ha/config", headers=_auth())

    assert response.status_code == 500
    assert response.json() == {"error": "Internal error", "message": "boom"}
    assert response.headers["access-control-allow-origin"] == "*"


def test_open_mode_is_announced_once_at_startup_as_warning(caplog) -> None:
    caplog.set_level(logging.INFO, logger="homecasa_agent.app")
    service = AgentService(AgentConfig.model_validate({"ha_token": "llat-token-value"}))

    service.log_startup()

    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert [r.getMessage() for r in warnings] == ["No AGENT_API_KEY configured - authentication disabled"]
