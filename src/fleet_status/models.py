# models.py
# Data contracts for the service-status reconciliation engine.
# No business logic lives here, pure schema and validation.

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class CapabilityToken(str, Enum):
    """Status token an agent declares for a capability key."""

    INSTALLED = "installed"
    VERIFIED = "verified"
    NOT_INSTALLED = "not_installed"
    FAILED = "failed"
    CHECKING = "checking"


class ExecutionStatus(str, Enum):
    """Lifecycle of a dispatched order."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def in_flight(self) -> bool:
        return self in (ExecutionStatus.PENDING, ExecutionStatus.RUNNING)

    @property
    def terminal(self) -> bool:
        return not self.in_flight


class ServiceState(str, Enum):
    """Canonical reconciled state of a service on a host."""

    NOT_CONFIGURED = "not_configured"
    CHECKING = "checking"
    INSTALLING = "installing"
    STALE = "stale"
    UNKNOWN = "unknown"
    FAILED = "failed"
    NOT_INSTALLED = "not_installed"
    STOPPED = "stopped"
    READY_TO_INSTALL = "ready_to_install"
    INSTALLED = "installed"


# Capability tokens that count as "present" for declarations and prerequisites.
PRESENT_TOKENS = frozenset({CapabilityToken.INSTALLED, CapabilityToken.VERIFIED})


def as_utc(value: datetime | None) -> datetime | None:
    """Naive timestamps from the ledger and the agent are UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Static configuration
# ---------------------------------------------------------------------------


class ServiceDefinition(BaseModel):
    """A platform service the dashboard knows how to install and verify."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Stable service identifier, e.g. 'caddy'.")
    name: str = Field(..., description="Display name.")
    description: str = Field(default="")
    capability_key: str = Field(..., description="Capability declared once installed.")
    install_playbooks: tuple[str, ...] = Field(..., min_length=1)
    verify_playbook: str | None = Field(default=None, description="Runtime probe playbook.")
    prerequisites: tuple[str, ...] = Field(default=())

    @property
    def last_verified_key(self) -> str:
        """Capability attribute where the agent records its last probe time."""
        return f"{self.id}.last_verified"


# ---------------------------------------------------------------------------
# Input snapshots
# ---------------------------------------------------------------------------


class CapabilitySnapshot(BaseModel):
    """Cached copy of the capability map an agent declares for one host."""

    model_config = ConfigDict(frozen=True)

    host_id: str | None = None
    capabilities: dict[str, CapabilityToken] = Field(default_factory=dict)
    attributes: dict[str, str] = Field(
        default_factory=dict,
        description="Free-form capability values that are not status tokens.",
    )

    @classmethod
    def from_raw(cls, host_id: str | None, raw: dict[str, Any] | None) -> "CapabilitySnapshot":
        """
        Split an agent's raw capability map into tokens and attributes.

        Unrecognised string values are kept as attributes; anything else
        (nested objects, numbers, null) is dropped.
        """
        tokens: dict[str, CapabilityToken] = {}
        attributes: dict[str, str] = {}
        for key, value in (raw or {}).items():
            if not isinstance(value, str):
                continue
            try:
                tokens[key] = CapabilityToken(value)
            except ValueError:
                attributes[key] = value
        return cls(host_id=host_id, capabilities=tokens, attributes=attributes)

    def status_of(self, key: str) -> CapabilityToken | None:
        return self.capabilities.get(key)

    def is_present(self, key: str) -> bool:
        return self.status_of(key) in PRESENT_TOKENS

    def declares(self, key: str, token: CapabilityToken) -> bool:
        return self.status_of(key) == token


class ExecutionRecord(BaseModel):
    """One dispatched order as seen by the ledger. Frozen once read."""

    model_config = ConfigDict(frozen=True)

    id: str
    host_id: str | None = None
    playbook_id: str = Field(..., description="Playbook that produced this order.")
    status: ExecutionStatus
    stdout_tail: str | None = None
    exit_code: int | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    normalize_timestamps = field_validator("created_at", "started_at", "completed_at")(as_utc)

    @property
    def last_activity(self) -> datetime:
        """Most advanced lifecycle timestamp known for this record."""
        return self.completed_at or self.started_at or self.created_at


class LivenessInfo(BaseModel):
    """Which host and agent are being reconciled, and when the agent last called in."""

    model_config = ConfigDict(frozen=True)

    host_id: str | None = None
    agent_id: str | None = None
    last_contact: datetime | None = None

    normalize_timestamps = field_validator("last_contact")(as_utc)

    @property
    def configured(self) -> bool:
        return bool(self.host_id) and bool(self.agent_id)


# ---------------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------------


class VerificationResult(BaseModel):
    """Structured truth-report emitted by a verification probe."""

    model_config = ConfigDict(frozen=True)

    service: str
    installed: bool = False
    running: bool = False
    https_ready: bool = False
    version: str = "unknown"
    checked_at: datetime | None = None
    error: str | None = None
    extras: dict[str, Any] = Field(default_factory=dict)

    normalize_timestamps = field_validator("checked_at")(as_utc)


class ReconciledStatus(BaseModel):
    """Outcome of one reconciliation pass for a (host, service) pair."""

    model_config = ConfigDict(frozen=True)

    service_id: str
    state: ServiceState
    rule: str = Field(..., description="Name of the classification branch that fired.")
    reason: str = ""
    verification: VerificationResult | None = None
    verified_at: datetime | None = None
    last_order: ExecutionRecord | None = None


class GatingResult(BaseModel):
    """Readiness decision folded from several checks."""

    model_config = ConfigDict(frozen=True)

    ready: bool
    checks: dict[str, bool] = Field(default_factory=dict)
    missing: list[str] = Field(default_factory=list)

    @field_validator("missing")
    @classmethod
    def dedupe_missing(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))
