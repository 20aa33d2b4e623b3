# ledger.py
# Read-only queries over the execution ledger, plus the mapping from raw
# order rows (as the orchestration API and the legacy dashboard table return
# them) to ExecutionRecord.
#
# The ledger is never assumed to be sorted: "most recent" is re-derived here
# from timestamps on every call.

import logging
import re
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from fleet_status.models import ExecutionRecord, ExecutionStatus

log = logging.getLogger(__name__)

# Legacy rows carry the playbook only as a "[playbook.id]" tag in free text.
_PLAYBOOK_TAG = re.compile(r"\[([A-Za-z0-9_.\-]+)\]")

_STATUS_ALIASES: dict[str, ExecutionStatus] = {
    "queued": ExecutionStatus.PENDING,
    "pending": ExecutionStatus.PENDING,
    "running": ExecutionStatus.RUNNING,
    "succeeded": ExecutionStatus.COMPLETED,
    "success": ExecutionStatus.COMPLETED,
    "completed": ExecutionStatus.COMPLETED,
    "failed": ExecutionStatus.FAILED,
    "cancelled": ExecutionStatus.CANCELLED,
    "canceled": ExecutionStatus.CANCELLED,
}


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def _newest(records: Iterable[ExecutionRecord]) -> ExecutionRecord | None:
    """
    Newest record by creation time, then by last lifecycle timestamp.

    On a full tie the record seen first wins, which matches the API's
    newest-first ordering.
    """
    best: ExecutionRecord | None = None
    best_key = None
    for record in records:
        key = (record.created_at, record.last_activity)
        if best is None or key > best_key:
            best, best_key = record, key
    return best


def latest_for(
    ledger: Iterable[ExecutionRecord],
    playbook_ids: Iterable[str],
) -> ExecutionRecord | None:
    """Most recent record produced by any of `playbook_ids`, whatever its status."""
    wanted = set(playbook_ids)
    return _newest(r for r in ledger if r.playbook_id in wanted)


def latest_completed_for(
    ledger: Iterable[ExecutionRecord],
    playbook_ids: Iterable[str],
) -> ExecutionRecord | None:
    """Most recent successfully completed record produced by any of `playbook_ids`."""
    wanted = set(playbook_ids)
    return _newest(
        r for r in ledger
        if r.playbook_id in wanted and r.status == ExecutionStatus.COMPLETED
    )


def for_host(ledger: Iterable[ExecutionRecord], host_id: str) -> list[ExecutionRecord]:
    """Records belonging to `host_id`. Records with no host are kept."""
    return [r for r in ledger if r.host_id in (None, host_id)]


# ---------------------------------------------------------------------------
# Raw order mapping
# ---------------------------------------------------------------------------


def _first(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def playbook_id_from_text(text: str | None) -> str | None:
    """Extract the playbook id from a legacy "[playbook.id] description" string."""
    if not text:
        return None
    match = _PLAYBOOK_TAG.search(text)
    return match.group(1) if match else None


def normalize_status(value: Any) -> ExecutionStatus | None:
    if not isinstance(value, str):
        return None
    return _STATUS_ALIASES.get(value.strip().lower())


def _stdout(raw: dict[str, Any]) -> str | None:
    tail = _first(raw, "stdout_tail", "stdoutTail")
    if tail is not None:
        return str(tail)

    report = raw.get("report")
    if not isinstance(report, dict):
        return None
    chunks = [
        str(step.get("stdout") or step.get("output"))
        for step in report.get("steps") or []
        if isinstance(step, dict) and (step.get("stdout") or step.get("output"))
    ]
    return "\n".join(chunks) or None


def record_from_order(raw: dict[str, Any]) -> ExecutionRecord | None:
    """
    Map one raw order row to an ExecutionRecord.

    Accepts snake_case and camelCase rows. The playbook comes from the
    explicit key when present and otherwise from the "[playbook.id]" tag in
    the description or name. Returns None for rows that cannot be tied to a
    playbook or carry an unknown status.
    """
    meta = raw.get("meta") if isinstance(raw.get("meta"), dict) else {}
    playbook_id = (
        _first(raw, "playbook_id", "playbookId", "playbook_key", "playbookKey")
        or meta.get("playbook_id")
        or playbook_id_from_text(raw.get("description"))
        or playbook_id_from_text(raw.get("name"))
    )
    if not playbook_id:
        return None

    status = normalize_status(raw.get("status"))
    if status is None:
        log.warning("Order %s has unknown status %r", raw.get("id"), raw.get("status"))
        return None

    return ExecutionRecord(
        id=str(raw["id"]),
        host_id=_first(raw, "server_id", "serverId", "infrastructure_id", "infrastructureId"),
        playbook_id=playbook_id,
        status=status,
        stdout_tail=_stdout(raw),
        exit_code=_first(raw, "exit_code", "exitCode"),
        created_at=_first(raw, "created_at", "createdAt"),
        started_at=_first(raw, "started_at", "startedAt"),
        completed_at=_first(raw, "completed_at", "completedAt"),
    )


def records_from_orders(rows: Iterable[dict[str, Any]]) -> list[ExecutionRecord]:
    """Map raw order rows, dropping the ones that cannot be tied to a playbook."""
    records: list[ExecutionRecord] = []
    for raw in rows:
        try:
            record = record_from_order(raw)
        except (KeyError, ValidationError) as exc:
            log.warning("Dropping malformed order row %s: %s", raw.get("id"), exc)
            continue
        if record is not None:
            records.append(record)
    return records
