# sources.py
# Collaborator contracts the monitor reads from and dispatches through.
# The engine assumes nothing beyond these signatures: results may be stale
# and the three reads are not consistent with each other.

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

from fleet_status.models import CapabilitySnapshot, ExecutionRecord


class CapabilitySource(Protocol):
    def get_capabilities(self, host_id: str) -> CapabilitySnapshot: ...


class LedgerSource(Protocol):
    def list_executions(self, host_id: str) -> Sequence[ExecutionRecord]: ...


class LivenessSource(Protocol):
    def get_last_contact(self, host_id: str) -> datetime | None: ...


class OrderDispatcher(Protocol):
    def dispatch(
        self,
        host_id: str,
        playbook_id: str,
        *,
        action: str = "run",
        params: dict[str, Any] | None = None,
    ) -> ExecutionRecord | None: ...
