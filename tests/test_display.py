from datetime import timedelta
from unittest.mock import patch

from rich.console import Console

from fleet_status import display
from fleet_status.models import GatingResult, ReconciledStatus, ServiceState, VerificationResult


def _recording_console():
    return Console(record=True, width=140, color_system=None)


def test_legacy_label_prefers_rule_over_state():
    status = ReconciledStatus(service_id="caddy", state=ServiceState.STALE, rule="declared_without_proof")
    assert display.legacy_label(status) == "État déclaré sans preuve runtime"

def test_legacy_label_falls_back_to_state():
    status = ReconciledStatus(service_id="caddy", state=ServiceState.STALE, rule="report_aged")
    assert display.legacy_label(status) == "Vérification périmée"

def test_every_state_has_a_colour():
    assert set(display.STATE_COLOURS) == set(ServiceState)

def test_status_table_renders_each_service(now):
    statuses = {
        "caddy": ReconciledStatus(
            service_id="caddy",
            state=ServiceState.INSTALLED,
            rule="fresh_report",
            reason="Running 2.7.6, HTTPS ready",
            verification=VerificationResult(service="caddy", installed=True, running=True, version="2.7.6"),
            verified_at=now - timedelta(minutes=2),
        ),
        "nginx": ReconciledStatus(
            service_id="nginx", state=ServiceState.UNKNOWN, rule="no_signal", reason="No verification on record",
        ),
    }
    console = _recording_console()

    with patch.object(display, "console", console):
        display.status_table(statuses, now)

    out = console.export_text()
    assert "caddy" in out
    assert "installed" in out
    assert "2m ago" in out
    assert "never" in out
    assert "No verification on record" in out

def test_gating_panel_lists_missing_labels():
    console = _recording_console()
    result = GatingResult(ready=False, checks={"agent_online": False}, missing=["Agent offline"])

    with patch.object(display, "console", console):
        display.gating_panel("DEPLOY GATE", result)

    out = console.export_text()
    assert "CLOSED" in out
    assert "Agent offline" in out
