"""Periodic housekeeping for the protection service."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from sqlalchemy.exc import SQLAlchemyError

from scanner_shield.core.settings import settings
from scanner_shield.services.protection import ProtectionService

logger = logging.getLogger(__name__)


class MaintenanceWorker:
    """Runs ``ProtectionService.cleanup_all`` on a fixed interval.

    Expired blocks, idle tracker windows, stale login attempts and old
    rate limit buckets are removed on every pass.
    """

    def __init__(self, service: ProtectionService, interval_seconds: float | None = None) -> None:
        self.service = service
        self.interval = max(
            0.1,
            float(
                settings.cleanup_interval_seconds if interval_seconds is None else interval_seconds
            ),
        )
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background cleanup loop."""
        if not self.running:
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background cleanup loop."""
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def run_once(self) -> None:
        try:
            await self.service.cleanup_all()
        except SQLAlchemyError as e:
            logger.warning("MaintenanceWorker encountered database error: %s", e)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.error("MaintenanceWorker encountered processing error: %s", e, exc_info=True)

    async def _run(self) -> None:
        while not self._stopping.is_set():
            # Sleep first so startup is not slowed down by a cleanup pass.
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            if self._stopping.is_set():
                return
            await self.run_once()
