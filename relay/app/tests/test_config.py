"""
Configuration Tests for the Relay

Tests environment loading, validation rules and derived values of
relay/app/config.py.
"""

import pytest
from pydantic import ValidationError

from relay.app.config import Settings, validate_configuration


def load_settings(monkeypatch, **env) -> Settings:
    """Build Settings from the given environment only"""
    for key in ("UPSTREAM_ORIGIN", "PROXY_PREFIX", "STRIP_PREFIX", "COOKIE_SAMESITE_POLICY", "LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return Settings(_env_file=None)


def test_loads_from_environment(monkeypatch):
    settings = load_settings(
        monkeypatch,
        UPSTREAM_ORIGIN="https://laclipasa-backend.fly.dev",
        PROXY_PREFIX="/fly-api/",
        STRIP_PREFIX="true",
    )

    assert settings.upstream_origin_str == "https://laclipasa-backend.fly.dev"
    assert settings.PROXY_PREFIX == "/fly-api/"
    assert settings.STRIP_PREFIX is True


def test_defaults(monkeypatch):
    settings = load_settings(monkeypatch, UPSTREAM_ORIGIN="https://backend.example")

    assert settings.PROXY_PREFIX == "/api/"
    assert settings.STRIP_PREFIX is False
    assert settings.COOKIE_SAMESITE_POLICY == "none"
    assert settings.LOG_LEVEL == "INFO"
    assert settings.upstream_timeout.connect == 10.0


def test_upstream_origin_is_required(monkeypatch):
    with pytest.raises(ValidationError):
        load_settings(monkeypatch)


@pytest.mark.parametrize(
    "origin",
    ["not-a-url", "https://backend.example/api", "https://backend.example/?x=1"],
)
def test_rejects_non_origin_upstream(monkeypatch, origin):
    with pytest.raises(ValidationError):
        load_settings(monkeypatch, UPSTREAM_ORIGIN=origin)


def test_origin_keeps_port(monkeypatch):
    settings = load_settings(monkeypatch, UPSTREAM_ORIGIN="http://backend:8002")

    assert settings.upstream_origin_str == "http://backend:8002"


@pytest.mark.parametrize("prefix", ["api", "/api", "api/", "/"])
def test_rejects_malformed_prefix(monkeypatch, prefix):
    with pytest.raises(ValidationError):
        load_settings(monkeypatch, UPSTREAM_ORIGIN="https://backend.example", PROXY_PREFIX=prefix)


def test_rejects_unknown_samesite_policy(monkeypatch):
    with pytest.raises(ValidationError):
        load_settings(
            monkeypatch,
            UPSTREAM_ORIGIN="https://backend.example",
            COOKIE_SAMESITE_POLICY="lax",
        )


def test_log_level_is_normalized(monkeypatch):
    settings = load_settings(monkeypatch, UPSTREAM_ORIGIN="https://backend.example", LOG_LEVEL="debug")

    assert settings.LOG_LEVEL == "DEBUG"


def test_upstream_target_follows_settings(monkeypatch):
    """Test the derived target and URL construction"""
    settings = load_settings(
        monkeypatch,
        UPSTREAM_ORIGIN="https://backend.example",
        PROXY_PREFIX="/fly-api/",
        STRIP_PREFIX="true",
    )
    target = settings.upstream_target

    assert target.matches("/fly-api/users")
    assert not target.matches("/fly-api")
    assert target.url_for("/fly-api/users", "a=1") == "https://backend.example/users?a=1"
    assert target.url_for("/fly-api/users") == "https://backend.example/users"


def test_validate_configuration_warns_on_plain_http(monkeypatch):
    settings = load_settings(monkeypatch, UPSTREAM_ORIGIN="http://localhost:8000")

    report = validate_configuration(settings)

    assert report["valid"] is True
    assert len(report["warnings"]) == 2


def test_validate_configuration_flags_inverted_timeouts(monkeypatch):
    settings = load_settings(
        monkeypatch,
        UPSTREAM_ORIGIN="https://backend.example",
        UPSTREAM_TIMEOUT_SECONDS="5",
        UPSTREAM_CONNECT_TIMEOUT_SECONDS="10",
    )

    report = validate_configuration(settings)

    assert report["valid"] is False
