from homecasa_agent.config import AgentConfig
from homecasa_agent.credentials import (
    DEFAULT_HA_BASE_URL,
    SUPERVISOR_BASE_URL,
    resolve_upstream_target,
)


def _make_cfg(**overrides: object) -> AgentConfig:
    return AgentConfig.model_validate(dict(overrides))


def test_supervisor_token_wins_over_long_lived_token_and_override() -> None:
    target = resolve_upstream_target(
        _make_cfg(
            supervisor_token="sup",
            ha_token="llat",
            ha_base_url="http://192.168.1.10:8123",
        )
    )
    assert target.token == "sup"
    assert target.base_url == SUPERVISOR_BASE_URL
    assert target.source == "SUPERVISOR_TOKEN"


def test_long_lived_token_uses_override_without_trailing_slash() -> None:
    target = resolve_upstream_target(_make_cfg(ha_token="llat", ha_base_url="http://192.168.1.10:8123/"))
    assert target.token == "llat"
    assert target.base_url == "http://192.168.1.10:8123"
    assert target.source == "HA_TOKEN"


def test_long_lived_token_defaults_to_direct_address() -> None:
    target = resolve_upstream_target(_make_cfg(ha_token="llat"))
    assert target.base_url == DEFAULT_HA_BASE_URL


def test_no_token_is_not_configured() -> None:
    target = resolve_upstream_target(_make_cfg())
    assert target.token is None
    assert target.configured is False
    assert target.source == "NONE"
