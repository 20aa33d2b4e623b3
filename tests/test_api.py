import json
from datetime import datetime, timezone

import httpx
import pytest

from fleet_status.api import ADMIN_KEY_HEADER, ApiError, OrchestrationClient
from fleet_status.models import CapabilityToken, ExecutionStatus

RUNNER = {
    "id": "runner-1",
    "name": "edge-01",
    "status": "ONLINE",
    "serverId": "srv-1",
    "lastHeartbeatAt": "2026-01-12T13:59:55Z",
    "capabilities": {
        "caddy.installed": "installed",
        "docker.installed": "verified",
        "caddy.last_verified": "2026-01-12T13:58:00Z",
        "cpu": {"cores": 4},
    },
}


def _client(handler, api_key="secret"):
    return OrchestrationClient("https://api.test", api_key, transport=httpx.MockTransport(handler))

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

def test_admin_key_header_is_sent():
    seen = {}

    def handler(request):
        seen["key"] = request.headers.get(ADMIN_KEY_HEADER)
        return httpx.Response(200, json={"status": "ok"})

    with _client(handler) as client:
        assert client.health() == {"status": "ok"}
    assert seen["key"] == "secret"

def test_no_key_no_header():
    def handler(request):
        assert ADMIN_KEY_HEADER not in request.headers
        return httpx.Response(200, json={})

    with _client(handler, api_key=None) as client:
        client.health()

def test_list_orders_filters_by_server_and_maps_rows():
    def handler(request):
        assert request.url.path == "/v1/orders"
        assert request.url.params["serverId"] == "srv-1"
        return httpx.Response(200, json={"orders": [
            {
                "id": "o-1",
                "serverId": "srv-1",
                "playbookKey": "proxy.caddy.verify",
                "status": "SUCCEEDED",
                "createdAt": "2026-01-12T13:55:00Z",
                "report": {"steps": [{"stdout": '{"service": "caddy", "installed": true}'}]},
            },
            {"id": "o-2", "serverId": "srv-1", "status": "SUCCEEDED", "createdAt": "2026-01-12T13:55:00Z"},
        ]})

    with _client(handler) as client:
        records = client.list_executions("srv-1")

    assert len(records) == 1
    assert records[0].status == ExecutionStatus.COMPLETED
    assert records[0].stdout_tail == '{"service": "caddy", "installed": true}'

def test_create_order_posts_playbook_and_returns_record():
    def handler(request):
        body = json.loads(request.content)
        assert request.method == "POST"
        assert body["serverId"] == "srv-1"
        assert body["playbookKey"] == "proxy.caddy.verify"
        assert body["action"] == "verify"
        assert body["idempotencyKey"].startswith("srv-1-proxy.caddy.verify-")
        return httpx.Response(201, json={"order": {
            "id": "o-9", "status": "QUEUED", "createdAt": "2026-01-12T14:00:00Z",
        }})

    with _client(handler) as client:
        record = client.dispatch("srv-1", "proxy.caddy.verify", action="verify")

    assert record.id == "o-9"
    assert record.status == ExecutionStatus.PENDING
    assert record.playbook_id == "proxy.caddy.verify"
    assert record.host_id == "srv-1"

def test_create_order_with_malformed_reply():
    def handler(request):
        return httpx.Response(201, json={"order": {"status": "QUEUED"}})

    with _client(handler) as client, pytest.raises(ApiError, match="malformed order") as exc_info:
        client.create_order("srv-1", "proxy.caddy.verify")
    assert exc_info.value.kind == "unknown"

# ---------------------------------------------------------------------------
# Runners
# ---------------------------------------------------------------------------

def _runners(request):
    return httpx.Response(200, json={"runners": [
        {"id": "runner-0", "serverId": "srv-0"},
        RUNNER,
    ]})

def test_find_agent_matches_attached_server():
    with _client(_runners) as client:
        assert client.find_agent("srv-1") == "runner-1"
        assert client.find_agent("srv-9") is None

def test_capabilities_split_tokens_and_attributes():
    with _client(_runners) as client:
        caps = client.get_capabilities("srv-1")

    assert caps.host_id == "srv-1"
    assert caps.capabilities == {
        "caddy.installed": CapabilityToken.INSTALLED,
        "docker.installed": CapabilityToken.VERIFIED,
    }
    assert caps.attributes == {"caddy.last_verified": "2026-01-12T13:58:00Z"}

def test_last_contact_parses_zulu_heartbeat():
    with _client(_runners) as client:
        assert client.get_last_contact("srv-1") == datetime(2026, 1, 12, 13, 59, 55, tzinfo=timezone.utc)
        assert client.get_last_contact("srv-0") is None

def test_unknown_host_has_empty_capabilities():
    with _client(_runners) as client:
        caps = client.get_capabilities("srv-9")
    assert caps.capabilities == {}

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("status_code, kind", [
    (401, "unauthorized"),
    (403, "forbidden"),
    (404, "not_found"),
    (502, "server_error"),
    (409, "unknown"),
])
def test_http_errors_map_to_kinds(status_code, kind):
    def handler(request):
        return httpx.Response(status_code, json={"error": "nope", "requestId": "req-42"})

    with _client(handler) as client, pytest.raises(ApiError, match="nope") as exc_info:
        client.list_runners()

    assert exc_info.value.kind == kind
    assert exc_info.value.status_code == status_code
    assert exc_info.value.request_id == "req-42"

def test_error_without_json_body():
    def handler(request):
        return httpx.Response(500, text="Internal Server Error", headers={"x-request-id": "abc"})

    with _client(handler) as client, pytest.raises(ApiError, match="HTTP 500") as exc_info:
        client.health()
    assert exc_info.value.request_id == "abc"

def test_network_failure_is_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with _client(handler) as client, pytest.raises(ApiError) as exc_info:
        client.list_orders("srv-1")
    assert exc_info.value.kind == "network_error"

def test_non_json_success_body():
    def handler(request):
        return httpx.Response(200, text="<html>")

    with _client(handler) as client, pytest.raises(ApiError, match="non-JSON"):
        client.health()

def test_empty_body_is_tolerated():
    with _client(lambda request: httpx.Response(204)) as client:
        assert client.health() == {}
        assert client.list_runners() == []
