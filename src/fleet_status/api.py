# api.py
# HTTP client for the orchestration API that owns runners and orders.
#
# Implements the collaborator contracts in sources.py on top of httpx so the
# monitor can run against a live deployment. Every transport or HTTP failure
# surfaces as ApiError with a stable `kind`; nothing is retried here.

import logging
import time
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError

from fleet_status.ledger import record_from_order, records_from_orders
from fleet_status.models import CapabilitySnapshot, ExecutionRecord, as_utc

log = logging.getLogger(__name__)

ADMIN_KEY_HEADER = "x-ikoma-admin-key"


class ApiError(Exception):
    """Raised when the orchestration API cannot be reached or rejects a request."""

    def __init__(
        self,
        kind: str,
        message: str,
        *,
        status_code: int | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.request_id = request_id


def _error_kind(status_code: int) -> str:
    if status_code == 401:
        return "unauthorized"
    if status_code == 403:
        return "forbidden"
    if status_code == 404:
        return "not_found"
    if status_code >= 500:
        return "server_error"
    return "unknown"


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return as_utc(datetime.fromisoformat(value))
    except ValueError:
        log.warning("Ignoring unparseable heartbeat timestamp %r", value)
        return None


def _unwrap(data: Any, key: str) -> Any:
    """The API wraps payloads inconsistently: {"orders": [...]} or a bare list."""
    if isinstance(data, dict) and key in data:
        return data[key]
    return data


class OrchestrationClient:
    """
    Thin synchronous client for the runners/orders API.

    Example:
        with OrchestrationClient("https://api.example.com", api_key="...") as client:
            records = client.list_executions("srv-1")
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {ADMIN_KEY_HEADER: api_key} if api_key else {}
        self._client = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> "OrchestrationClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise ApiError("network_error", f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            body = body if isinstance(body, dict) else {}
            message = body.get("error") or body.get("message") or f"HTTP {response.status_code}"
            raise ApiError(
                _error_kind(response.status_code),
                f"{method} {path}: {message}",
                status_code=response.status_code,
                request_id=body.get("requestId") or response.headers.get("x-request-id"),
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError("unknown", f"{method} {path} returned non-JSON body") from exc

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def health(self) -> dict[str, Any]:
        return self._request("GET", "/health") or {}

    def list_runners(self) -> list[dict[str, Any]]:
        runners = _unwrap(self._request("GET", "/v1/runners"), "runners")
        return [r for r in runners or [] if isinstance(r, dict)]

    def get_runner(self, runner_id: str) -> dict[str, Any]:
        return _unwrap(self._request("GET", f"/v1/runners/{runner_id}"), "runner") or {}

    def list_orders(self, server_id: str | None = None) -> list[ExecutionRecord]:
        params = {"serverId": server_id} if server_id else None
        rows = _unwrap(self._request("GET", "/v1/orders", params=params), "orders")
        return records_from_orders(r for r in rows or [] if isinstance(r, dict))

    def create_order(
        self,
        server_id: str,
        playbook_key: str,
        *,
        action: str = "run",
        created_by: str = "fleet-status",
        params: dict[str, Any] | None = None,
    ) -> ExecutionRecord | None:
        body = {
            "serverId": server_id,
            "playbookKey": playbook_key,
            "action": action,
            "idempotencyKey": f"{server_id}-{playbook_key}-{int(time.time() * 1000)}",
            "createdBy": created_by,
            "params": params or {},
        }
        raw = _unwrap(self._request("POST", "/v1/orders", json=body), "order")
        if not isinstance(raw, dict):
            return None
        try:
            return record_from_order({"serverId": server_id, "playbookKey": playbook_key, **raw})
        except (KeyError, ValidationError) as exc:
            raise ApiError("unknown", f"POST /v1/orders returned a malformed order: {exc}") from exc

    # ------------------------------------------------------------------
    # Collaborator contracts
    # ------------------------------------------------------------------

    def find_runner(self, host_id: str) -> dict[str, Any] | None:
        """Runner attached to `host_id`, if any."""
        for runner in self.list_runners():
            attached = runner.get("serverId") or runner.get("infrastructureId")
            if attached == host_id:
                return runner
        return None

    def find_agent(self, host_id: str) -> str | None:
        runner = self.find_runner(host_id)
        return runner.get("id") if runner else None

    def get_capabilities(self, host_id: str) -> CapabilitySnapshot:
        runner = self.find_runner(host_id) or {}
        raw = runner.get("capabilities")
        return CapabilitySnapshot.from_raw(host_id, raw if isinstance(raw, dict) else None)

    def list_executions(self, host_id: str) -> list[ExecutionRecord]:
        return self.list_orders(host_id)

    def get_last_contact(self, host_id: str) -> datetime | None:
        runner = self.find_runner(host_id) or {}
        return _parse_timestamp(runner.get("lastHeartbeatAt") or runner.get("last_seen_at"))

    def dispatch(
        self,
        host_id: str,
        playbook_id: str,
        *,
        action: str = "run",
        params: dict[str, Any] | None = None,
    ) -> ExecutionRecord | None:
        return self.create_order(host_id, playbook_id, action=action, params=params)
