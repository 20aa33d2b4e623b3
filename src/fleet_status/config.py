# config.py
# Engine thresholds and collaborator settings.
#
# Values come from the environment (a local .env is loaded on import).
# The two thresholds answer different questions and are never merged:
#   agent_offline_threshold      : has the agent called in recently?
#   verification_stale_threshold : is the last probe report still current?

import os
from datetime import timedelta

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

load_dotenv()


DEFAULT_AGENT_OFFLINE = timedelta(seconds=60)
DEFAULT_VERIFICATION_STALE = timedelta(minutes=5)


class ConfigError(Exception):
    """Raised when an environment value cannot be turned into a valid setting."""


class EngineConfig(BaseModel):
    """Frozen settings shared by the reconciler, the gating evaluator and the monitor."""

    model_config = ConfigDict(frozen=True)

    agent_offline_threshold: timedelta = Field(default=DEFAULT_AGENT_OFFLINE)
    verification_stale_threshold: timedelta = Field(default=DEFAULT_VERIFICATION_STALE)
    legacy_proxy: str = Field(default="nginx", description="Service id of the legacy reverse proxy.")
    primary_proxy: str = Field(default="caddy", description="Service id of the primary reverse proxy.")
    api_url: str = Field(default="http://127.0.0.1:3000")
    api_key: str | None = Field(default=None, repr=False)
    poll_interval: timedelta = Field(default=timedelta(seconds=5))

    @field_validator("agent_offline_threshold", "verification_stale_threshold", "poll_interval")
    @classmethod
    def positive(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("must be a positive duration")
        return value


def _seconds(name: str, default: timedelta) -> timedelta:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return timedelta(seconds=float(raw))
    except (ValueError, OverflowError) as exc:
        raise ConfigError(f"{name} must be a number of seconds, got {raw!r}") from exc


def load_config() -> EngineConfig:
    """Build an EngineConfig from FLEET_* environment variables."""
    try:
        return EngineConfig(
            agent_offline_threshold=_seconds("FLEET_AGENT_OFFLINE_SECONDS", DEFAULT_AGENT_OFFLINE),
            verification_stale_threshold=_seconds(
                "FLEET_VERIFICATION_STALE_SECONDS", DEFAULT_VERIFICATION_STALE
            ),
            legacy_proxy=os.getenv("FLEET_LEGACY_PROXY", "nginx"),
            primary_proxy=os.getenv("FLEET_PRIMARY_PROXY", "caddy"),
            api_url=os.getenv("FLEET_API_URL", "http://127.0.0.1:3000"),
            api_key=os.getenv("FLEET_API_KEY") or None,
            poll_interval=_seconds("FLEET_POLL_SECONDS", timedelta(seconds=5)),
        )
    except ValidationError as exc:
        raise ConfigError(f"Invalid engine configuration: {exc}") from exc
