import itertools
import json
from datetime import datetime, timedelta, timezone

import pytest

from fleet_status.models import ExecutionRecord, ExecutionStatus, LivenessInfo

NOW = datetime(2026, 1, 12, 14, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def probe_output():
    """Build probe stdout: human-readable progress lines followed by a JSON report."""

    def build(
        service="caddy",
        *,
        installed=True,
        running=True,
        https_ready=True,
        version="2.7.6",
        checked_at=None,
        error=None,
        **extra,
    ):
        report = {
            "service": service,
            "installed": installed,
            "running": running,
            "version": version,
            "https_ready": https_ready,
            "checked_at": checked_at.isoformat() if checked_at else None,
            "error": error,
            **extra,
        }
        return (
            f"=== {service} runtime verification ===\n"
            f"✓ {service} binary found\n"
            "Listening ports:\n"
            "  0.0.0.0:443\n\n"
            f"{json.dumps(report, indent=2)}\n"
        )

    return build


@pytest.fixture
def make_record(now):
    """ExecutionRecord factory; `ago` is how long before `now` the order was created."""
    ids = itertools.count(1)

    def build(
        playbook_id,
        status="completed",
        *,
        ago=timedelta(minutes=1),
        stdout=None,
        exit_code=None,
        host_id="srv-1",
    ):
        status = ExecutionStatus(status)
        created = now - ago
        started = created + timedelta(seconds=2) if status != ExecutionStatus.PENDING else None
        completed = created + timedelta(seconds=20) if status.terminal else None
        return ExecutionRecord(
            id=f"order-{next(ids)}",
            host_id=host_id,
            playbook_id=playbook_id,
            status=status,
            stdout_tail=stdout,
            exit_code=exit_code,
            created_at=created,
            started_at=started,
            completed_at=completed,
        )

    return build


@pytest.fixture
def live(now):
    return LivenessInfo(host_id="srv-1", agent_id="runner-1", last_contact=now - timedelta(seconds=5))


@pytest.fixture
def offline(now):
    return LivenessInfo(host_id="srv-1", agent_id="runner-1", last_contact=now - timedelta(minutes=3))
