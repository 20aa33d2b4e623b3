from datetime import timedelta

import pytest

from fleet_status.config import (
    DEFAULT_AGENT_OFFLINE,
    DEFAULT_VERIFICATION_STALE,
    ConfigError,
    EngineConfig,
    load_config,
)

ENV = (
    "FLEET_AGENT_OFFLINE_SECONDS",
    "FLEET_VERIFICATION_STALE_SECONDS",
    "FLEET_LEGACY_PROXY",
    "FLEET_PRIMARY_PROXY",
    "FLEET_API_URL",
    "FLEET_API_KEY",
    "FLEET_POLL_SECONDS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = load_config()
    assert config.agent_offline_threshold == DEFAULT_AGENT_OFFLINE == timedelta(seconds=60)
    assert config.verification_stale_threshold == DEFAULT_VERIFICATION_STALE == timedelta(minutes=5)
    assert config.legacy_proxy == "nginx"
    assert config.primary_proxy == "caddy"
    assert config.api_key is None

def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("FLEET_AGENT_OFFLINE_SECONDS", "90")
    monkeypatch.setenv("FLEET_VERIFICATION_STALE_SECONDS", "600")
    monkeypatch.setenv("FLEET_PRIMARY_PROXY", "traefik")
    monkeypatch.setenv("FLEET_API_KEY", "k")
    monkeypatch.setenv("FLEET_POLL_SECONDS", "2.5")

    config = load_config()

    assert config.agent_offline_threshold == timedelta(seconds=90)
    assert config.verification_stale_threshold == timedelta(minutes=10)
    assert config.primary_proxy == "traefik"
    assert config.api_key == "k"
    assert config.poll_interval == timedelta(seconds=2.5)

def test_blank_value_falls_back_to_default(monkeypatch):
    monkeypatch.setenv("FLEET_AGENT_OFFLINE_SECONDS", "  ")
    assert load_config().agent_offline_threshold == DEFAULT_AGENT_OFFLINE

def test_non_numeric_threshold(monkeypatch):
    monkeypatch.setenv("FLEET_VERIFICATION_STALE_SECONDS", "five minutes")
    with pytest.raises(ConfigError, match="FLEET_VERIFICATION_STALE_SECONDS"):
        load_config()

def test_non_positive_threshold(monkeypatch):
    monkeypatch.setenv("FLEET_AGENT_OFFLINE_SECONDS", "-1")
    with pytest.raises(ConfigError, match="positive"):
        load_config()

def test_api_key_is_not_in_repr():
    assert "hunter2" not in repr(EngineConfig(api_key="hunter2"))

@pytest.mark.parametrize("raw", ["inf", "1e400", "nan"])
def test_unrepresentable_duration(monkeypatch, raw):
    monkeypatch.setenv("FLEET_AGENT_OFFLINE_SECONDS", raw)
    with pytest.raises(ConfigError, match="FLEET_AGENT_OFFLINE_SECONDS"):
        load_config()
