# gating.py
# Readiness decisions derived from reconciled statuses and raw capabilities.
#
# This is the only place that compares services with each other. Two kinds
# of gate live here:
#
#   service gates       fold reconciled statuses (staleness already applied)
#   prerequisite gates  AND-fold raw capability tokens taken at face value,
#                       since they gate installing, not claims of running

from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta

from fleet_status.config import DEFAULT_AGENT_OFFLINE
from fleet_status.liveness import is_live
from fleet_status.models import (
    CapabilitySnapshot,
    GatingResult,
    LivenessInfo,
    ReconciledStatus,
    ServiceState,
)

PROXY_CHECK = "https_proxy"


def is_deployable(status: ReconciledStatus | None) -> bool:
    """True iff the service is installed, running and serving HTTPS per a fresh report."""
    if status is None or status.state != ServiceState.INSTALLED:
        return False
    result = status.verification
    if result is None:
        return False
    return result.installed and result.running and result.https_ready


def evaluate_readiness(
    statuses: Mapping[str, ReconciledStatus],
    *,
    legacy_proxy: str = "nginx",
    primary_proxy: str = "caddy",
) -> GatingResult:
    """
    Is there a working HTTPS-capable reverse proxy on the host?

    Ready when either the legacy or the primary proxy is deployable. The two
    services are reconciled independently; only their verdicts are combined.
    """
    legacy_ok = is_deployable(statuses.get(legacy_proxy))
    primary_ok = is_deployable(statuses.get(primary_proxy))
    ready = legacy_ok or primary_ok

    missing: list[str] = []
    if not ready:
        missing.append(f"No HTTPS-ready reverse proxy ({primary_proxy} or {legacy_proxy})")

    return GatingResult(
        ready=ready,
        checks={
            f"{legacy_proxy}.https_ready": legacy_ok,
            f"{primary_proxy}.https_ready": primary_ok,
            PROXY_CHECK: ready,
        },
        missing=missing,
    )


def evaluate_prerequisites(
    caps: CapabilitySnapshot,
    required: Iterable[str],
    liveness: LivenessInfo,
    *,
    threshold: timedelta = DEFAULT_AGENT_OFFLINE,
    now: datetime | None = None,
) -> GatingResult:
    """
    Can installation orders be sent to this host at all?

    AND of: a host is selected, an agent is associated, the agent is online,
    and each required capability is declared installed or verified.
    """
    has_host = bool(liveness.host_id)
    has_agent = bool(liveness.agent_id)
    online = has_agent and is_live(liveness.last_contact, threshold, now)

    checks: dict[str, bool] = {"host": has_host, "agent": has_agent, "agent_online": online}
    missing: list[str] = []
    if not has_host:
        missing.append("No host selected")
    if not has_agent:
        missing.append("No agent associated")
    elif not online:
        missing.append("Agent offline")

    for key in required:
        present = caps.is_present(key)
        checks[key] = present
        if not present:
            missing.append(f"{key} missing")

    return GatingResult(ready=all(checks.values()), checks=checks, missing=missing)


def combine(*results: GatingResult) -> GatingResult:
    """AND several gates into one, keeping every check and missing label."""
    checks: dict[str, bool] = {}
    missing: list[str] = []
    for result in results:
        checks.update(result.checks)
        missing.extend(result.missing)
    return GatingResult(
        ready=all(r.ready for r in results),
        checks=checks,
        missing=missing,
    )
