# reconcile.py
# Service status reconciliation.
#
# Correlates three independently refreshed, independently stale signals for
# one (host, service) pair:
#
#   capabilities  : what the agent declares is installed
#   ledger        : the orders dispatched to the agent and how they ended
#   probe output  : the JSON report a verification playbook printed
#
# and classifies the pair into exactly one ServiceState. The checks run in a
# fixed order and the order is part of the contract:
#
#    1. not_configured  no host or no agent
#    2. checking        latest verification order is pending/running
#    3. installing      latest install order is pending/running
#    4. (parse the report of the latest terminal verification order)
#    5. stale           agent offline while a declared/verified state exists
#    6. unknown         no report, no failed probe, nothing declared
#    7. stale           declared installed but never proven at runtime
#    8. failed          latest probe failed and left no report
#    9. not_installed / stopped / failed   report from a failed probe
#   10. stale           report older than the staleness threshold
#   11. ready_to_install / stopped / installed   fresh report
#   12. unknown         fallback
#
# Agent liveness is checked before any report is trusted: a report from an
# agent that has since gone dark is not current truth.
#
# Pure function of its inputs. No I/O, no caching, nothing mutated.

import logging
from collections.abc import Iterable
from datetime import datetime

from fleet_status.config import EngineConfig
from fleet_status.ledger import latest_completed_for, latest_for
from fleet_status.liveness import age, is_live, utcnow
from fleet_status.models import (
    CapabilitySnapshot,
    ExecutionRecord,
    ExecutionStatus,
    LivenessInfo,
    ReconciledStatus,
    ServiceDefinition,
    ServiceState,
    VerificationResult,
    as_utc,
)
from fleet_status.signals import parse_verification

log = logging.getLogger(__name__)


class ReconcileContractError(TypeError):
    """Raised when the caller passes a missing or mistyped input snapshot."""


# Classification branches, in evaluation order.
RULE_NOT_CONFIGURED = "not_configured"
RULE_VERIFICATION_IN_FLIGHT = "verification_in_flight"
RULE_INSTALL_IN_FLIGHT = "install_in_flight"
RULE_AGENT_OFFLINE = "agent_offline"
RULE_NO_SIGNAL = "no_signal"
RULE_DECLARED_WITHOUT_PROOF = "declared_without_proof"
RULE_PROBE_FAILED = "probe_failed"
RULE_FAILED_PROBE_REPORT = "failed_probe_report"
RULE_REPORT_AGED = "report_aged"
RULE_FRESH_REPORT = "fresh_report"
RULE_FALLBACK = "fallback"

RULES = (
    RULE_NOT_CONFIGURED,
    RULE_VERIFICATION_IN_FLIGHT,
    RULE_INSTALL_IN_FLIGHT,
    RULE_AGENT_OFFLINE,
    RULE_NO_SIGNAL,
    RULE_DECLARED_WITHOUT_PROOF,
    RULE_PROBE_FAILED,
    RULE_FAILED_PROBE_REPORT,
    RULE_REPORT_AGED,
    RULE_FRESH_REPORT,
    RULE_FALLBACK,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _check_contract(
    definition: ServiceDefinition,
    caps: CapabilitySnapshot,
    ledger: Iterable[ExecutionRecord],
    liveness: LivenessInfo,
) -> None:
    expected = (
        ("definition", definition, ServiceDefinition),
        ("caps", caps, CapabilitySnapshot),
        ("liveness", liveness, LivenessInfo),
    )
    for name, value, kind in expected:
        if not isinstance(value, kind):
            raise ReconcileContractError(
                f"{name} must be a {kind.__name__}, got {type(value).__name__}"
            )
    if ledger is None:
        raise ReconcileContractError("ledger must be an iterable of ExecutionRecord, got None")


def _declared_verified_at(definition: ServiceDefinition, caps: CapabilitySnapshot) -> datetime | None:
    """Last probe time the agent recorded in its capability map, if parseable."""
    raw = caps.attributes.get(definition.last_verified_key)
    if not raw:
        return None
    try:
        return as_utc(datetime.fromisoformat(raw))
    except ValueError:
        return None


def _report_time(result: VerificationResult, source: ExecutionRecord) -> datetime:
    return result.checked_at or source.last_activity


def _running_label(result: VerificationResult) -> str:
    version = f" {result.version}" if result.version != "unknown" else ""
    if result.https_ready:
        return f"Running{version}, HTTPS ready"
    return f"Running{version}, active"


class _Classifier:
    """Builds ReconciledStatus values that share the per-call context."""

    def __init__(self, service_id: str) -> None:
        self.service_id = service_id

    def __call__(
        self,
        state: ServiceState,
        rule: str,
        reason: str,
        *,
        result: VerificationResult | None = None,
        verified_at: datetime | None = None,
        order: ExecutionRecord | None = None,
    ) -> ReconciledStatus:
        log.debug("%s → %s (%s)", self.service_id, state.value, rule)
        return ReconciledStatus(
            service_id=self.service_id,
            state=state,
            rule=rule,
            reason=reason,
            verification=result,
            verified_at=verified_at,
            last_order=order,
        )


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


def reconcile(
    definition: ServiceDefinition,
    caps: CapabilitySnapshot,
    ledger: Iterable[ExecutionRecord],
    liveness: LivenessInfo,
    *,
    config: EngineConfig | None = None,
    now: datetime | None = None,
) -> ReconciledStatus:
    """
    Classify one service on one host from the current input snapshots.

    `ledger` may hold records for any playbook in any order. `now` defaults
    to the current UTC time; pass it explicitly for reproducible results.

    Raises ReconcileContractError if a snapshot is missing. Every other
    irregularity (unparseable output, stale data, missing host) becomes a
    status rather than an exception.
    """
    _check_contract(definition, caps, ledger, liveness)
    config = config or EngineConfig()
    now = as_utc(now) if now is not None else utcnow()
    records = list(ledger)
    status = _Classifier(definition.id)

    # 1. Nothing to reconcile against.
    if not liveness.configured:
        return status(
            ServiceState.NOT_CONFIGURED,
            RULE_NOT_CONFIGURED,
            "No host selected" if not liveness.host_id else "No agent associated with this host",
        )

    verify_ids = (definition.verify_playbook,) if definition.verify_playbook else ()
    last_probe = latest_for(records, verify_ids)

    # 2. A probe is queued or running.
    if last_probe is not None and last_probe.status.in_flight:
        return status(
            ServiceState.CHECKING,
            RULE_VERIFICATION_IN_FLIGHT,
            "Verification in progress",
            order=last_probe,
        )

    # 3. An install is queued or running.
    last_install = latest_for(records, definition.install_playbooks)
    if last_install is not None and last_install.status.in_flight:
        return status(
            ServiceState.INSTALLING,
            RULE_INSTALL_IN_FLIGHT,
            "Installation in progress",
            order=last_install,
        )

    # 4. Read the report of the latest terminal probe.
    failed_probe = (
        last_probe if last_probe is not None and last_probe.status == ExecutionStatus.FAILED else None
    )
    source = failed_probe or latest_completed_for(records, verify_ids)
    result = parse_verification(definition.id, source.stdout_tail) if source else None
    declared = caps.is_present(definition.capability_key)

    if result is not None:
        verified_at = _report_time(result, source)
    else:
        verified_at = _declared_verified_at(definition, caps)

    # 5. The agent went dark: whatever we last knew can no longer be trusted.
    online = is_live(liveness.last_contact, config.agent_offline_threshold, now)
    if not online and (result is not None or declared or verified_at is not None):
        return status(
            ServiceState.STALE,
            RULE_AGENT_OFFLINE,
            "Agent offline",
            result=result,
            verified_at=verified_at,
            order=source or last_install,
        )

    # 6. No evidence of any kind.
    if result is None and failed_probe is None and not declared:
        return status(
            ServiceState.UNKNOWN,
            RULE_NO_SIGNAL,
            "No verification on record",
            order=last_install,
        )

    # 7. Declared by the agent, never proven at runtime.
    if result is None and declared:
        return status(
            ServiceState.STALE,
            RULE_DECLARED_WITHOUT_PROOF,
            "Declared without runtime proof",
            verified_at=verified_at,
            order=source or last_install,
        )

    # 8. The probe failed before it could report.
    if result is None and failed_probe is not None:
        exit_code = failed_probe.exit_code
        suffix = f" (exit code {exit_code})" if exit_code is not None else ""
        return status(
            ServiceState.FAILED,
            RULE_PROBE_FAILED,
            f"Verification failed{suffix}",
            order=failed_probe,
        )

    # 12. Nothing above applied and there is no report to classify.
    if result is None:
        return status(ServiceState.UNKNOWN, RULE_FALLBACK, "Status unknown", order=source)

    # 9. The probe failed but still reported.
    if failed_probe is not None:
        if not result.installed:
            state, reason = ServiceState.NOT_INSTALLED, "Not installed"
        elif not result.running:
            state, reason = ServiceState.STOPPED, "Installed but not running"
        else:
            state, reason = ServiceState.FAILED, result.error or "Verification reported an error"
        return status(
            state,
            RULE_FAILED_PROBE_REPORT,
            reason,
            result=result,
            verified_at=verified_at,
            order=failed_probe,
        )

    # 10. A successful report that is too old to be current truth.
    elapsed = age(verified_at, now)
    if elapsed > config.verification_stale_threshold:
        minutes = round(elapsed.total_seconds() / 60)
        return status(
            ServiceState.STALE,
            RULE_REPORT_AGED,
            f"Last verification {minutes} minutes ago",
            result=result,
            verified_at=verified_at,
            order=source,
        )

    # 11. A fresh, successful report.
    if not result.installed:
        state, reason = ServiceState.READY_TO_INSTALL, "Not installed"
    elif not result.running:
        state, reason = ServiceState.STOPPED, "Installed but not running"
    else:
        state, reason = ServiceState.INSTALLED, _running_label(result)
    return status(
        state,
        RULE_FRESH_REPORT,
        reason,
        result=result,
        verified_at=verified_at,
        order=source,
    )


def reconcile_all(
    definitions: Iterable[ServiceDefinition],
    caps: CapabilitySnapshot,
    ledger: Iterable[ExecutionRecord],
    liveness: LivenessInfo,
    *,
    config: EngineConfig | None = None,
    now: datetime | None = None,
) -> dict[str, ReconciledStatus]:
    """Reconcile several services against one consistent set of snapshots."""
    if ledger is None:
        raise ReconcileContractError("ledger must be an iterable of ExecutionRecord, got None")
    records = list(ledger)
    now = as_utc(now) if now is not None else utcnow()
    return {
        d.id: reconcile(d, caps, records, liveness, config=config, now=now)
        for d in definitions
    }
