# monitor.py
# Wires the collaborator sources to the reconciler and the gating evaluator.
#
# Control flow per host:
#   read capabilities, ledger and last contact (independently, any order)
#   → reconcile every catalog service against that one snapshot triple
#   → fold the statuses into readiness gates
#
# The monitor holds no state between calls. Polling, retries and caching
# belong to whoever calls it.

import logging
from collections.abc import Iterable
from datetime import datetime

from fleet_status.catalog import SERVICES, UnknownServiceError
from fleet_status.config import EngineConfig
from fleet_status.gating import combine, evaluate_prerequisites, evaluate_readiness
from fleet_status.ledger import for_host
from fleet_status.liveness import utcnow
from fleet_status.models import (
    CapabilitySnapshot,
    ExecutionRecord,
    GatingResult,
    LivenessInfo,
    ReconciledStatus,
    ServiceDefinition,
)
from fleet_status.reconcile import reconcile_all
from fleet_status.sources import CapabilitySource, LedgerSource, LivenessSource, OrderDispatcher

log = logging.getLogger(__name__)


class HostSnapshot:
    """The three input snapshots for one host, read at roughly the same time."""

    def __init__(
        self,
        caps: CapabilitySnapshot,
        ledger: list[ExecutionRecord],
        liveness: LivenessInfo,
        taken_at: datetime,
    ) -> None:
        self.caps = caps
        self.ledger = ledger
        self.liveness = liveness
        self.taken_at = taken_at


class StatusMonitor:
    """
    Reconciles catalog services for a host from live collaborator sources.

    Example:
        client = OrchestrationClient(config.api_url, config.api_key)
        monitor = StatusMonitor(client, client, client, client, config)
        statuses = monitor.reconcile_host("srv-1", "runner-7")
        gate = monitor.readiness(statuses)
    """

    def __init__(
        self,
        capabilities: CapabilitySource,
        ledger: LedgerSource,
        liveness: LivenessSource,
        dispatcher: OrderDispatcher,
        config: EngineConfig | None = None,
        services: Iterable[ServiceDefinition] | None = None,
    ) -> None:
        self._capabilities = capabilities
        self._ledger = ledger
        self._liveness = liveness
        self._dispatcher = dispatcher
        self._config = config or EngineConfig()
        self._services = tuple(services) if services is not None else tuple(SERVICES.values())
        self._by_id = {s.id: s for s in self._services}

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def services(self) -> tuple[ServiceDefinition, ...]:
        return self._services

    def service(self, service_id: str) -> ServiceDefinition:
        """Definition of a service this monitor reconciles."""
        try:
            return self._by_id[service_id]
        except KeyError:
            raise UnknownServiceError(f"Service '{service_id}' is not monitored here.") from None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self, host_id: str | None, agent_id: str | None) -> HostSnapshot:
        """Read the three sources for a host. No host means nothing to read."""
        now = utcnow()
        if not host_id:
            return HostSnapshot(
                caps=CapabilitySnapshot(),
                ledger=[],
                liveness=LivenessInfo(agent_id=agent_id),
                taken_at=now,
            )

        caps = self._capabilities.get_capabilities(host_id)
        ledger = for_host(self._ledger.list_executions(host_id), host_id)
        last_contact = self._liveness.get_last_contact(host_id) if agent_id else None
        log.debug(
            "Snapshot %s: %d capabilities, %d orders, last contact %s",
            host_id, len(caps.capabilities), len(ledger), last_contact,
        )
        return HostSnapshot(
            caps=caps,
            ledger=ledger,
            liveness=LivenessInfo(host_id=host_id, agent_id=agent_id, last_contact=last_contact),
            taken_at=now,
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile_snapshot(
        self,
        snapshot: HostSnapshot,
        now: datetime | None = None,
    ) -> dict[str, ReconciledStatus]:
        return reconcile_all(
            self._services,
            snapshot.caps,
            snapshot.ledger,
            snapshot.liveness,
            config=self._config,
            now=now or snapshot.taken_at,
        )

    def reconcile_host(self, host_id: str | None, agent_id: str | None) -> dict[str, ReconciledStatus]:
        """Reconcile every configured service on one host."""
        return self.reconcile_snapshot(self.snapshot(host_id, agent_id))

    # ------------------------------------------------------------------
    # Gating
    # ------------------------------------------------------------------

    def readiness(self, statuses: dict[str, ReconciledStatus]) -> GatingResult:
        """HTTPS reverse-proxy gate used to unlock deployments."""
        return evaluate_readiness(
            statuses,
            legacy_proxy=self._config.legacy_proxy,
            primary_proxy=self._config.primary_proxy,
        )

    def prerequisites(self, snapshot: HostSnapshot, service_id: str | None = None) -> GatingResult:
        """
        Install gate for one service, or for the union of every service's
        prerequisites when `service_id` is None.
        """
        if service_id is not None:
            required: Iterable[str] = self.service(service_id).prerequisites
        else:
            required = dict.fromkeys(p for s in self._services for p in s.prerequisites)
        return evaluate_prerequisites(
            snapshot.caps,
            required,
            snapshot.liveness,
            threshold=self._config.agent_offline_threshold,
            now=snapshot.taken_at,
        )

    def deploy_gate(self, snapshot: HostSnapshot, statuses: dict[str, ReconciledStatus]) -> GatingResult:
        """Everything a deployment needs: a reachable, equipped host and an HTTPS proxy."""
        return combine(self.prerequisites(snapshot), self.readiness(statuses))

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def trigger_verification(self, host_id: str, service_id: str) -> ExecutionRecord | None:
        """
        Queue a fresh verification probe for a service.

        Pass-through to the dispatcher. Raises UnknownServiceError for an
        unknown service and ValueError for one without a verification
        playbook.
        """
        definition = self.service(service_id)
        if not definition.verify_playbook:
            raise ValueError(f"Service '{service_id}' has no verification playbook.")
        log.info("Dispatching %s to %s", definition.verify_playbook, host_id)
        return self._dispatcher.dispatch(host_id, definition.verify_playbook, action="verify")
