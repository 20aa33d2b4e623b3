# display.py
# All terminal output for the fleet-status CLI.
#
# This module owns presentation entirely. The monitor and the reconciler
# never format strings for humans beyond a short reason; they hand values to
# the named functions here.
#
# Colour language:
#   green   installed / gate open
#   cyan    work in flight (checking, installing)
#   yellow  stale or unknown, needs a fresh probe
#   red     failed, stopped, not installed, gate closed
#   dim     not configured

from datetime import datetime

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from fleet_status.liveness import age, utcnow
from fleet_status.models import ExecutionRecord, GatingResult, ReconciledStatus, ServiceState

console = Console()

STATE_COLOURS: dict[ServiceState, str] = {
    ServiceState.INSTALLED: "green",
    ServiceState.READY_TO_INSTALL: "green",
    ServiceState.CHECKING: "cyan",
    ServiceState.INSTALLING: "cyan",
    ServiceState.STALE: "yellow",
    ServiceState.UNKNOWN: "yellow",
    ServiceState.FAILED: "red",
    ServiceState.STOPPED: "red",
    ServiceState.NOT_INSTALLED: "red",
    ServiceState.NOT_CONFIGURED: "dim",
}

# Labels the legacy dashboard shows, keyed by classification rule first and
# by state as a fallback.
LEGACY_LABELS: dict[str, str] = {
    "not_configured": "Non configuré",
    "verification_in_flight": "Vérification en cours",
    "install_in_flight": "Installation en cours",
    "agent_offline": "Le runner est hors ligne",
    "declared_without_proof": "État déclaré sans preuve runtime",
    "probe_failed": "Échec",
    ServiceState.STALE.value: "Vérification périmée",
    ServiceState.UNKNOWN.value: "Statut inconnu",
    ServiceState.FAILED.value: "Échec",
    ServiceState.NOT_INSTALLED.value: "Non installé",
    ServiceState.STOPPED.value: "Arrêté",
    ServiceState.READY_TO_INSTALL.value: "Prêt à installer",
    ServiceState.INSTALLED.value: "Installé",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


def _ago(timestamp: datetime | None, now: datetime | None = None) -> str:
    if timestamp is None:
        return "never"
    seconds = int(age(timestamp, now or utcnow()).total_seconds())
    if seconds < 60:
        return f"{max(seconds, 0)}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    return f"{seconds // 3600}h ago"


def legacy_label(status: ReconciledStatus) -> str:
    """French label the legacy dashboard used for this status."""
    return LEGACY_LABELS.get(status.rule) or LEGACY_LABELS.get(status.state.value, status.state.value)


# ---------------------------------------------------------------------------
# Host view
# ---------------------------------------------------------------------------


def host_header(host_id: str | None, agent_id: str | None, agent_state: str) -> None:
    colour = {"online": "green", "offline": "red", "paused": "yellow"}.get(agent_state, "dim")
    console.print()
    console.print(Rule(f"[cyan]HOST {host_id or '-'}[/cyan]", style="cyan"))
    console.print(
        _label("AGENT", colour),
        f"[white] {agent_id or 'none'}[/white]  [{colour}]{agent_state}[/{colour}]",
    )


def status_table(statuses: dict[str, ReconciledStatus], now: datetime | None = None) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("Service", style="bold white", width=12)
    table.add_column("State", width=16)
    table.add_column("Version", style="dim white", width=10)
    table.add_column("Verified", justify="right", width=10)
    table.add_column("Reason", style="white")

    for service_id, status in statuses.items():
        colour = STATE_COLOURS.get(status.state, "white")
        version = status.verification.version if status.verification else ""
        table.add_row(
            service_id,
            f"[{colour}]{status.state.value}[/{colour}]",
            version,
            _ago(status.verified_at, now),
            _mono(status.reason, 60),
        )

    console.print(
        Panel(
            table,
            title=_label("SERVICE STATUS", "cyan"),
            border_style="cyan",
            padding=(0, 1),
        )
    )


def gating_panel(title: str, result: GatingResult) -> None:
    console.print()
    colour = "green" if result.ready else "red"
    lines = [
        f"[green]✓[/green] {name}" if ok else f"[red]✗[/red] {name}"
        for name, ok in result.checks.items()
    ]
    if result.missing:
        lines.append("")
        lines.extend(f"[dim]missing:[/dim] [white]{m}[/white]" for m in result.missing)
    console.print(
        Panel(
            "\n".join(lines) or "[dim]no checks[/dim]",
            title=_label(f"{title}: {'OPEN ✓' if result.ready else 'CLOSED ✗'}", colour),
            border_style=colour,
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


def verification_queued(service_id: str, record: ExecutionRecord | None) -> None:
    console.print()
    order = f"[dim]order {record.id}[/dim]" if record else "[dim]no order id returned[/dim]"
    console.print(
        _label("VERIFY", "cyan"),
        f"[cyan] Probe queued for[/cyan] [bold white]{service_id}[/bold white]  {order}",
    )


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{reason}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()
