"""Tests for the request protection middleware."""

import asyncio

from fastapi import status
from fastapi.testclient import TestClient
from starlette.requests import Request

from scanner_shield.api.middleware import resolve_client_ip

CLIENT_IP = "testclient"


def _request(headers: dict[str, str], client: tuple[str, int] | None = ("10.0.0.1", 5123)) -> Request:
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/",
            "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
            "client": client,
        }
    )


def test_admitted_response_carries_limit_headers(client: TestClient) -> None:
    r = client.get("/")
    assert r.status_code == status.HTTP_200_OK
    assert r.headers["X-RateLimit-Limit"] == "150"
    assert r.headers["X-RateLimit-Remaining"] == "149"
    assert "X-RateLimit-Reset" in r.headers


def test_blocked_ip_receives_403(client: TestClient, api_service) -> None:
    asyncio.run(
        api_service.blocking.block_ip("default", CLIENT_IP, reason="scraping", duration_seconds=600)
    )

    r = client.get("/")

    assert r.status_code == status.HTTP_403_FORBIDDEN
    body = r.json()
    assert body["error"] == "Forbidden"
    assert body["message"] == "Your IP address has been blocked"
    assert body["reason"] == "scraping"
    assert body["unblockAt"] is not None


def test_blocks_apply_per_tenant(client: TestClient, api_service, auth_headers) -> None:
    asyncio.run(api_service.blocking.block_ip("tenant-a", CLIENT_IP))

    assert client.get("/").status_code == status.HTTP_200_OK
    # The bearer token's tenant wins over the default.
    assert client.get("/", headers=auth_headers).status_code == 403


def test_tenant_header_cannot_escape_block(client: TestClient, api_service) -> None:
    asyncio.run(api_service.blocking.block_ip("default", CLIENT_IP))

    r = client.get("/", headers={"X-Tenant-ID": "anything-else"})

    assert r.status_code == status.HTTP_403_FORBIDDEN
    assert asyncio.run(api_service.rate_limiter.get_stats("anything-else")) == []


def test_tenant_header_does_not_grant_fresh_bucket(client: TestClient, api_service) -> None:
    api_service.config.update_policy("default", {"per_ip_limit": 1, "burst_allowance": 0})

    assert client.get("/").status_code == status.HTTP_200_OK
    r = client.get("/", headers={"X-Tenant-ID": "tenant-spoofed"})

    assert r.status_code == status.HTTP_429_TOO_MANY_REQUESTS


def test_exempt_paths_bypass_protection(client: TestClient, api_service) -> None:
    asyncio.run(api_service.blocking.block_ip("default", CLIENT_IP))

    r = client.get("/health")

    assert r.status_code == status.HTTP_200_OK
    assert r.json() == {"status": "ok"}
    assert "X-RateLimit-Limit" not in r.headers


def test_rate_limited_request_receives_429(client: TestClient, api_service) -> None:
    api_service.config.update_policy("default", {"per_ip_limit": 2, "burst_allowance": 0})

    codes = [client.get("/").status_code for _ in range(3)]

    assert codes == [200, 200, 429]
    r = client.get("/")
    assert r.json() == {
        "error": "Too Many Requests",
        "message": "Rate limit exceeded",
        "retryAfter": 60,
    }
    assert r.headers["Retry-After"] == "60"
    assert r.headers["X-RateLimit-Limit"] == "2"
    assert r.headers["X-RateLimit-Remaining"] == "0"


def test_whitelisted_ip_is_not_limited(client: TestClient, api_service) -> None:
    api_service.config.update_policy("default", {"per_ip_limit": 1, "burst_allowance": 0})
    asyncio.run(api_service.blocking.add_to_whitelist("default", CLIENT_IP))

    codes = [client.get("/").status_code for _ in range(3)]

    assert codes == [200, 200, 200]


def test_protection_failure_fails_closed(client: TestClient, api_service, mocker) -> None:
    mocker.patch.object(api_service, "evaluate_request", side_effect=RuntimeError("cache lost"))

    r = client.get("/")

    assert r.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert r.json()["error"] == "Service Unavailable"


def test_forwarded_headers_ignored_by_default(test_settings) -> None:
    request = _request({"X-Forwarded-For": "203.0.113.1"})
    assert resolve_client_ip(request, test_settings) == "10.0.0.1"


def test_forwarded_headers_honoured_behind_trusted_proxy(test_settings) -> None:
    trusted = test_settings.model_copy(update={"trust_proxy_headers": True})

    assert resolve_client_ip(_request({"X-Forwarded-For": "203.0.113.1, 10.0.0.1"}), trusted) == (
        "203.0.113.1"
    )
    assert resolve_client_ip(_request({"X-Real-IP": " 203.0.113.2 "}), trusted) == "203.0.113.2"
    assert resolve_client_ip(_request({}, client=None), trusted) == "unknown"
