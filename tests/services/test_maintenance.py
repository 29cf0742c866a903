# tests/services/test_maintenance.py
"""Tests for the periodic cleanup worker."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from scanner_shield.services.maintenance import MaintenanceWorker


@pytest.mark.asyncio
async def test_run_once_removes_expired_blocks(protection_service, clock):
    await protection_service.blocking.block_ip("tenant-a", "203.0.113.5", duration_seconds=60)
    clock.advance(120)

    await MaintenanceWorker(protection_service, interval_seconds=60).run_once()

    assert await protection_service.blocking.get_blocked_ips("tenant-a") == []


@pytest.mark.asyncio
async def test_run_once_logs_database_errors(protection_service, mocker):
    mocker.patch.object(
        protection_service,
        "cleanup_all",
        side_effect=OperationalError("DELETE", {}, Exception("database is locked")),
    )
    worker = MaintenanceWorker(protection_service, interval_seconds=60)

    await worker.run_once()

    protection_service.cleanup_all.assert_awaited_once()


@pytest.mark.asyncio
async def test_worker_runs_until_stopped(protection_service, mocker):
    cleanup = mocker.patch.object(protection_service, "cleanup_all", new=mocker.AsyncMock())
    worker = MaintenanceWorker(protection_service, interval_seconds=0.1)

    await worker.start()
    assert worker.running is True
    await asyncio.sleep(0.35)
    await worker.stop()

    assert worker.running is False
    assert cleanup.await_count >= 2


@pytest.mark.asyncio
async def test_stop_without_start_is_noop(protection_service):
    worker = MaintenanceWorker(protection_service)
    await worker.stop()
    assert worker.running is False
