# signals.py
# Extracts structured verification reports from free-form probe output.
#
# Probe scripts print human-readable progress lines and then a JSON report:
#
#   ✓ Caddy installed: 2.7.6
#   ✓ Caddy service is running
#   {
#     "service": "caddy",
#     "installed": true,
#     "running": true,
#     "https_ready": true,
#     "version": "2.7.6",
#     "checked_at": "2026-01-12T14:03:11+00:00",
#     "error": null
#   }
#
# Several probes can share one script, so a report is only accepted when its
# own "service" field names the service being reconciled. Nothing here
# raises on bad input: absent or malformed reports read as "no result".

import json
import logging
import re
from datetime import datetime
from typing import Any

from fleet_status.models import VerificationResult

log = logging.getLogger(__name__)

_KNOWN_FIELDS = frozenset(
    {"service", "installed", "running", "https_ready", "version", "checked_at", "error"}
)


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------


def _anchor(service_name: str) -> re.Pattern[str]:
    return re.compile(r'"service"\s*:\s*"' + re.escape(service_name) + r'"')


def _balanced_spans(text: str) -> list[tuple[int, int]]:
    """
    Return (start, end) offsets of every balanced {...} span in `text`.

    Quotes only open a string inside braces, so prose like `echo "done"`
    does not derail the scan. A raw newline ends a string: probe reports are
    single-line-per-field, and an unterminated quote must not swallow the
    rest of the output.
    """
    spans: list[tuple[int, int]] = []
    stack: list[int] = []
    in_string = False
    escaped = False

    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"' or char == "\n":
                in_string = False
            continue

        if char == '"' and stack:
            in_string = True
        elif char == "{":
            stack.append(index)
        elif char == "}" and stack:
            spans.append((stack.pop(), index + 1))

    return spans


def _candidates(service_name: str, spans: list[tuple[int, int]], text: str) -> list[tuple[int, int]]:
    """Balanced spans that carry the service anchor, latest first."""
    anchor = _anchor(service_name)
    found = [(start, end) for start, end in spans if anchor.search(text, start, end)]
    found.sort(key=lambda span: span[0], reverse=True)
    return found


def _owner(raw: str) -> Any:
    """Top-level "service" of a JSON object, or None."""
    try:
        data = json.loads(raw, strict=False)
    except json.JSONDecodeError:
        return None
    return data.get("service") if isinstance(data, dict) else None


def _nested_in_foreign(
    service_name: str,
    span: tuple[int, int],
    spans: list[tuple[int, int]],
    text: str,
) -> bool:
    """True when an enclosing object reports for a different service."""
    start, end = span
    for outer_start, outer_end in spans:
        if outer_start < start and outer_end >= end:
            owner = _owner(text[outer_start:outer_end])
            if isinstance(owner, str) and owner != service_name:
                return True
    return False


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip())
    except ValueError:
        return None


def _to_result(data: dict[str, Any]) -> VerificationResult:
    version = data.get("version")
    error = data.get("error")
    return VerificationResult(
        service=data["service"],
        installed=data.get("installed") is True,
        running=data.get("running") is True,
        https_ready=data.get("https_ready") is True,
        version=str(version) if version not in (None, "") else "unknown",
        checked_at=_parse_timestamp(data.get("checked_at")),
        error=str(error) if error else None,
        extras={k: v for k, v in data.items() if k not in _KNOWN_FIELDS},
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_verification(service_name: str, output: str | None) -> VerificationResult | None:
    """
    Find the report for `service_name` in captured probe output.

    Returns None when the output is empty, holds no report for this service,
    or every candidate report is malformed. When the service reported more
    than once, the last report wins.
    """
    if not output or not service_name:
        return None

    spans = _balanced_spans(output)
    for start, end in _candidates(service_name, spans, output):
        raw = output[start:end]
        try:
            data = json.loads(raw, strict=False)
        except json.JSONDecodeError as exc:
            log.debug("Skipping malformed %s report: %s", service_name, exc)
            continue
        if not isinstance(data, dict) or data.get("service") != service_name:
            continue
        if _nested_in_foreign(service_name, (start, end), spans, output):
            log.debug("Skipping %s object nested in another service's report", service_name)
            continue
        return _to_result(data)

    log.debug("No %s report found in %d chars of output", service_name, len(output))
    return None
