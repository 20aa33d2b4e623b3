# run.py
# Entry point. Config and wiring only, no logic lives here.
#
#   fleet-status srv-1                 one reconciliation pass
#   fleet-status srv-1 --watch         re-poll every FLEET_POLL_SECONDS
#   fleet-status srv-1 --verify caddy  queue a fresh probe first

import argparse
import logging
import time

from rich.logging import RichHandler

from fleet_status import display
from fleet_status.api import ApiError, OrchestrationClient
from fleet_status.catalog import UnknownServiceError
from fleet_status.config import ConfigError, load_config
from fleet_status.liveness import agent_status
from fleet_status.monitor import StatusMonitor


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=display.console, rich_tracebacks=True)],
    )


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="fleet-status", description="Reconcile service status for one host.")
    parser.add_argument("host", help="Server id to reconcile.")
    parser.add_argument("--agent", help="Runner id; looked up from the API when omitted.")
    parser.add_argument("--verify", metavar="SERVICE", help="Queue a verification probe first.")
    parser.add_argument("--watch", action="store_true", help="Keep polling until interrupted.")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def _render(monitor: StatusMonitor, host_id: str, agent_id: str | None) -> None:
    snapshot = monitor.snapshot(host_id, agent_id)
    statuses = monitor.reconcile_snapshot(snapshot)

    state = agent_status(
        None,
        snapshot.liveness.last_contact,
        monitor.config.agent_offline_threshold,
        snapshot.taken_at,
    )
    display.host_header(host_id, agent_id, state)
    display.status_table(statuses, snapshot.taken_at)
    display.gating_panel("PREREQUISITES", monitor.prerequisites(snapshot))
    display.gating_panel("DEPLOY GATE", monitor.deploy_gate(snapshot, statuses))


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    _configure_logging(args.verbose)

    try:
        config = load_config()
    except ConfigError as exc:
        display.halt(str(exc))
        return 2

    with OrchestrationClient(config.api_url, config.api_key) as client:
        monitor = StatusMonitor(client, client, client, client, config)
        try:
            agent_id = args.agent or client.find_agent(args.host)

            if args.verify:
                record = monitor.trigger_verification(args.host, args.verify)
                display.verification_queued(args.verify, record)

            _render(monitor, args.host, agent_id)
            while args.watch:
                time.sleep(config.poll_interval.total_seconds())
                _render(monitor, args.host, agent_id)
        except (ApiError, UnknownServiceError, ValueError) as exc:
            display.halt(str(exc))
            return 1
        except KeyboardInterrupt:
            return 0

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
