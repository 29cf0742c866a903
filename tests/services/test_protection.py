# tests/services/test_protection.py
"""Tests for the per-request admission sequence."""

from __future__ import annotations

import pytest

from scanner_shield.core.errors import ServiceNotInitializedError
from scanner_shield.services.protection import (
    DECISION_ALLOW,
    DECISION_BLOCKED,
    DECISION_RATE_LIMITED,
    DECISION_WHITELISTED,
    ProtectionService,
)

TENANT = "tenant-a"
IP = "198.51.100.20"


@pytest.mark.asyncio
async def test_requests_rejected_before_init(session_factory, clock, test_settings):
    service = ProtectionService(session_factory, clock=clock, app_settings=test_settings)

    with pytest.raises(ServiceNotInitializedError):
        await service.evaluate_request(TENANT, IP, "/scan", "GET")
    with pytest.raises(ServiceNotInitializedError):
        await service.check_for_ddos(TENANT)


@pytest.mark.asyncio
async def test_normal_request_is_tracked_and_charged(protection_service):
    decision = await protection_service.evaluate_request(TENANT, IP, "/scan", "GET", "agent/1.0")

    assert decision.allowed is True
    assert decision.action == DECISION_ALLOW
    assert decision.limit.limit == 150
    assert decision.limit.remaining == 149
    assert protection_service.tracker.get_ip_stats(IP).total_requests == 1


@pytest.mark.asyncio
async def test_whitelisted_ip_bypasses_everything(protection_service):
    await protection_service.blocking.add_to_whitelist(TENANT, IP)

    decision = await protection_service.evaluate_request(TENANT, IP, "/scan", "GET")

    assert decision.action == DECISION_WHITELISTED
    assert decision.allowed is True
    assert decision.limit is None
    assert protection_service.tracker.get_all_ips() == []


@pytest.mark.asyncio
async def test_blocked_ip_is_rejected_untracked(protection_service):
    await protection_service.blocking.block_ip(TENANT, IP, reason="abuse report", duration_seconds=60)

    decision = await protection_service.evaluate_request(TENANT, IP, "/scan", "GET")

    assert decision.action == DECISION_BLOCKED
    assert decision.allowed is False
    assert decision.block.reason == "abuse report"
    assert protection_service.tracker.get_all_ips() == []
    # Blocks are tenant scoped.
    other = await protection_service.evaluate_request("tenant-b", IP, "/scan", "GET")
    assert other.allowed is True


@pytest.mark.asyncio
async def test_ip_bucket_exhaustion(protection_service):
    protection_service.config.update_policy(TENANT, {"per_ip_limit": 2, "burst_allowance": 0})

    actions = [
        (await protection_service.evaluate_request(TENANT, IP, "/scan", "GET")).action
        for _ in range(3)
    ]

    assert actions == [DECISION_ALLOW, DECISION_ALLOW, DECISION_RATE_LIMITED]


@pytest.mark.asyncio
async def test_user_bucket_is_checked_when_user_known(protection_service):
    protection_service.config.update_policy(TENANT, {"per_user_limit": 1, "burst_allowance": 0})

    first = await protection_service.evaluate_request(TENANT, IP, "/scan", "GET", user_id="u-1")
    second = await protection_service.evaluate_request(
        TENANT, "198.51.100.21", "/scan", "GET", user_id="u-1"
    )
    anonymous = await protection_service.evaluate_request(TENANT, "198.51.100.22", "/scan", "GET")

    assert first.allowed is True
    assert second.action == DECISION_RATE_LIMITED
    assert second.limit.limit == 1
    assert anonymous.allowed is True


@pytest.mark.asyncio
async def test_request_path_triggers_ddos_mitigation(protection_service):
    flood = [f"10.9.0.{i}" for i in range(1, 16)]
    for ip in flood:
        for _ in range(90):
            protection_service.tracker.track_request(ip, "/scan", "GET")

    decision = await protection_service.evaluate_request(TENANT, IP, "/scan", "GET")

    assert decision.allowed is True
    assert all(protection_service.blocking.is_blocked(TENANT, ip).blocked for ip in flood)
    assert protection_service.blocking.is_blocked(TENANT, IP).blocked is False


@pytest.mark.asyncio
async def test_ddos_check_failure_does_not_reject(protection_service, mocker):
    mocker.patch.object(
        protection_service.ddos, "check_for_ddos", side_effect=RuntimeError("tracker corrupted")
    )

    decision = await protection_service.evaluate_request(TENANT, IP, "/scan", "GET")

    assert decision.allowed is True


@pytest.mark.asyncio
async def test_cleanup_all_reports_each_component(protection_service, clock):
    await protection_service.evaluate_request(TENANT, IP, "/scan", "GET")
    await protection_service.brute_force.track_attempt(TENANT, "alice", IP, success=False)
    await protection_service.blocking.block_ip(TENANT, "203.0.113.5", duration_seconds=60)
    clock.advance(25 * 3600)

    report = await protection_service.cleanup_all()

    assert report.tracker_keys == 1
    assert report.login_attempt_keys == 1
    assert report.blocks_removed == 1
    assert report.whitelist_removed == 0
    assert report.rate_limit_records == 1
