# liveness.py
# Decides whether an agent is reachable from its last-contact timestamp.
# Pure functions; the caller supplies `now` when it needs determinism.

from datetime import datetime, timedelta, timezone

from fleet_status.models import as_utc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def age(timestamp: datetime, now: datetime | None = None) -> timedelta:
    """Elapsed time since `timestamp`. Negative when the clock of the source runs ahead."""
    return as_utc(now or utcnow()) - as_utc(timestamp)


def is_live(
    last_contact: datetime | None,
    threshold: timedelta,
    now: datetime | None = None,
) -> bool:
    """
    True iff the agent called in strictly less than `threshold` ago.

    No contact on record is never live. A contact timestamp in the future
    (agent clock ahead of ours) counts as live.
    """
    if last_contact is None:
        return False
    return age(last_contact, now) < threshold


def agent_status(
    reported: str | None,
    last_contact: datetime | None,
    threshold: timedelta,
    now: datetime | None = None,
) -> str:
    """
    Effective agent status for display: online, offline, paused or unknown.

    A paused agent stays paused whatever its heartbeat says; otherwise the
    heartbeat decides, and an agent that never called in is unknown.
    """
    if (reported or "").lower() == "paused":
        return "paused"
    if last_contact is None:
        return "unknown"
    return "online" if is_live(last_contact, threshold, now) else "offline"
