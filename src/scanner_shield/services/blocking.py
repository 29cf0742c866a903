"""Tenant-scoped IP deny list and allow list.

Both lists are persisted and mirrored in process memory so the per-request
checks never touch the database. Mutations write storage first and only then
update the caches; expired entries are evicted lazily when they are read.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scanner_shield.db.time import Clock, ensure_utc, from_epoch, to_epoch
from scanner_shield.models import BlockedIP, WhitelistEntry
from scanner_shield.models.blocking import BLOCK_TYPE_MANUAL
from scanner_shield.services import events
from scanner_shield.services.events import EventSink

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

CacheKey = tuple[str, str]


@dataclass(frozen=True)
class BlockStatus:
    blocked: bool
    reason: str | None = None
    block_type: str | None = None
    expires_at: datetime | None = None
    blocked_at: datetime | None = None


@dataclass(frozen=True)
class BlockResult:
    """Outcome of a block, unblock or whitelist mutation."""

    success: bool
    existing: bool = False
    reason: str | None = None
    error: str | None = None
    block_id: str | None = None
    expires_at: datetime | None = None


@dataclass
class _CachedBlock:
    reason: str
    block_type: str
    blocked_at: datetime
    expires_at: datetime | None
    violation_count: int

    @classmethod
    def from_row(cls, row: BlockedIP) -> _CachedBlock:
        return cls(
            reason=row.reason,
            block_type=row.block_type,
            blocked_at=ensure_utc(row.blocked_at),
            expires_at=ensure_utc(row.expires_at) if row.expires_at else None,
            violation_count=row.violation_count,
        )


class BlockingManager:
    """Maintains blocked and whitelisted IPs per tenant."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock = time.time,
        event_sink: EventSink | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._events = event_sink
        self._blocked: dict[CacheKey, _CachedBlock] = {}
        self._whitelist: dict[CacheKey, datetime | None] = {}

    async def init(self) -> None:
        """Load all non-expired blocks and whitelist entries into memory."""
        self._load_blocked()
        self._load_whitelist()
        logger.info(
            "Blocking manager loaded %d blocked IPs and %d whitelisted IPs",
            len(self._blocked),
            len(self._whitelist),
        )

    # --- Reads (cache only) ---------------------------------------------------------
    def is_blocked(self, tenant_id: str, ip: str) -> BlockStatus:
        key = (tenant_id, ip)
        entry = self._blocked.get(key)
        if entry is None:
            return BlockStatus(blocked=False)
        if self._expired(entry.expires_at):
            del self._blocked[key]
            return BlockStatus(blocked=False)
        return BlockStatus(
            blocked=True,
            reason=entry.reason,
            block_type=entry.block_type,
            expires_at=entry.expires_at,
            blocked_at=entry.blocked_at,
        )

    def is_whitelisted(self, tenant_id: str, ip: str) -> bool:
        key = (tenant_id, ip)
        if key not in self._whitelist:
            return False
        if self._expired(self._whitelist[key]):
            del self._whitelist[key]
            return False
        return True

    def violation_count(self, tenant_id: str, ip: str) -> int:
        """Return how many times an active block was triggered (0 if not blocked)."""
        if not self.is_blocked(tenant_id, ip).blocked:
            return 0
        return self._blocked[(tenant_id, ip)].violation_count

    # --- Mutations ------------------------------------------------------------------
    async def block_ip(
        self,
        tenant_id: str,
        ip: str,
        block_type: str = BLOCK_TYPE_MANUAL,
        reason: str = "",
        duration_seconds: int | None = None,
        blocked_by: str = SYSTEM_ACTOR,
    ) -> BlockResult:
        """Block an IP. Whitelisted IPs are never blocked.

        Re-blocking an already blocked IP only increments its violation count.
        """
        if self.is_whitelisted(tenant_id, ip):
            logger.warning("Refusing to block whitelisted IP %s (tenant %s)", ip, tenant_id)
            return BlockResult(success=False, reason="whitelisted")

        key = (tenant_id, ip)
        if self.is_blocked(tenant_id, ip).blocked:
            try:
                with self._session_factory() as db:
                    db.execute(
                        update(BlockedIP)
                        .where(BlockedIP.tenant_id == tenant_id, BlockedIP.ip_address == ip)
                        .values(violation_count=BlockedIP.violation_count + 1)
                    )
                    db.commit()
            except SQLAlchemyError as exc:
                logger.error("Error incrementing violation count for %s: %s", ip, exc)
                return BlockResult(success=False, error=str(exc))
            self._blocked[key].violation_count += 1
            return BlockResult(success=True, existing=True)

        now = from_epoch(self._clock())
        expires_at = (
            now + timedelta(seconds=duration_seconds) if duration_seconds is not None else None
        )
        reason = reason or f"Blocked ({block_type})"
        row = BlockedIP(
            tenant_id=tenant_id,
            ip_address=ip,
            reason=reason,
            block_type=block_type,
            blocked_at=now,
            expires_at=expires_at,
            blocked_by=blocked_by,
            auto_blocked=blocked_by == SYSTEM_ACTOR,
            violation_count=1,
            created_at=now,
        )
        db = self._session_factory()
        try:
            # An expired block may still be stored until the next cleanup.
            db.execute(
                delete(BlockedIP).where(
                    BlockedIP.tenant_id == tenant_id, BlockedIP.ip_address == ip
                )
            )
            db.add(row)
            db.commit()
            block_id = row.id
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Error blocking IP %s (tenant %s): %s", ip, tenant_id, exc)
            return BlockResult(success=False, error=str(exc))
        finally:
            db.close()

        self._blocked[key] = _CachedBlock(
            reason=reason,
            block_type=block_type,
            blocked_at=now,
            expires_at=expires_at,
            violation_count=1,
        )
        logger.info("Blocked IP %s (%s, tenant %s)", ip, block_type, tenant_id)
        events.emit(
            self._events,
            events.IP_BLOCKED,
            {
                "tenant_id": tenant_id,
                "ip": ip,
                "block_type": block_type,
                "reason": reason,
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
        )
        return BlockResult(success=True, block_id=block_id, expires_at=expires_at)

    async def unblock_ip(self, tenant_id: str, ip: str) -> BlockResult:
        db = self._session_factory()
        try:
            db.execute(
                delete(BlockedIP).where(
                    BlockedIP.tenant_id == tenant_id, BlockedIP.ip_address == ip
                )
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Error unblocking IP %s (tenant %s): %s", ip, tenant_id, exc)
            return BlockResult(success=False, error=str(exc))
        finally:
            db.close()

        self._blocked.pop((tenant_id, ip), None)
        logger.info("Unblocked IP %s (tenant %s)", ip, tenant_id)
        events.emit(self._events, events.IP_UNBLOCKED, {"tenant_id": tenant_id, "ip": ip})
        return BlockResult(success=True)

    async def add_to_whitelist(
        self,
        tenant_id: str,
        ip: str,
        description: str = "",
        added_by: str = "admin",
        duration_seconds: int | None = None,
    ) -> BlockResult:
        """Whitelist an IP (replacing any previous entry) and lift any block on it.

        The block removal and the whitelist upsert commit together, so the IP
        is never left both blocked and whitelisted.
        """
        now = from_epoch(self._clock())
        expires_at = (
            now + timedelta(seconds=duration_seconds) if duration_seconds is not None else None
        )

        db = self._session_factory()
        try:
            lifted = db.execute(
                delete(BlockedIP).where(
                    BlockedIP.tenant_id == tenant_id, BlockedIP.ip_address == ip
                )
            ).rowcount
            entry = db.execute(
                select(WhitelistEntry).where(
                    WhitelistEntry.tenant_id == tenant_id, WhitelistEntry.ip_address == ip
                )
            ).scalar_one_or_none()
            if entry is None:
                entry = WhitelistEntry(tenant_id=tenant_id, ip_address=ip, created_at=now)
                db.add(entry)
            entry.description = description
            entry.added_by = added_by
            entry.added_at = now
            entry.expires_at = expires_at
            db.commit()
            entry_id = entry.id
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Error whitelisting IP %s (tenant %s): %s", ip, tenant_id, exc)
            return BlockResult(success=False, error=str(exc))
        finally:
            db.close()

        self._whitelist[(tenant_id, ip)] = expires_at
        cached = self._blocked.pop((tenant_id, ip), None)
        if lifted or cached is not None:
            logger.info("Unblocked IP %s on whitelisting (tenant %s)", ip, tenant_id)
            events.emit(self._events, events.IP_UNBLOCKED, {"tenant_id": tenant_id, "ip": ip})

        logger.info("Whitelisted IP %s (tenant %s)", ip, tenant_id)
        events.emit(
            self._events,
            events.IP_WHITELISTED,
            {"tenant_id": tenant_id, "ip": ip, "description": description},
        )
        return BlockResult(success=True, block_id=entry_id, expires_at=expires_at)

    async def remove_from_whitelist(self, tenant_id: str, ip: str) -> BlockResult:
        db = self._session_factory()
        try:
            db.execute(
                delete(WhitelistEntry).where(
                    WhitelistEntry.tenant_id == tenant_id, WhitelistEntry.ip_address == ip
                )
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Error removing %s from whitelist (tenant %s): %s", ip, tenant_id, exc)
            return BlockResult(success=False, error=str(exc))
        finally:
            db.close()

        self._whitelist.pop((tenant_id, ip), None)
        logger.info("Removed IP %s from whitelist (tenant %s)", ip, tenant_id)
        return BlockResult(success=True)

    # --- Listings -------------------------------------------------------------------
    async def get_blocked_ips(self, tenant_id: str, limit: int = 100) -> list[BlockedIP]:
        """Return active blocks for a tenant, newest first."""
        now = from_epoch(self._clock())
        try:
            with self._session_factory() as db:
                rows = db.execute(
                    select(BlockedIP)
                    .where(
                        BlockedIP.tenant_id == tenant_id,
                        or_(BlockedIP.expires_at.is_(None), BlockedIP.expires_at > now),
                    )
                    .order_by(BlockedIP.blocked_at.desc())
                    .limit(limit)
                ).scalars()
                return list(rows)
        except SQLAlchemyError as exc:
            logger.error("Error listing blocked IPs for tenant %s: %s", tenant_id, exc)
            return []

    async def get_whitelist(self, tenant_id: str, limit: int = 100) -> list[WhitelistEntry]:
        """Return active whitelist entries for a tenant, newest first."""
        now = from_epoch(self._clock())
        try:
            with self._session_factory() as db:
                rows = db.execute(
                    select(WhitelistEntry)
                    .where(
                        WhitelistEntry.tenant_id == tenant_id,
                        or_(WhitelistEntry.expires_at.is_(None), WhitelistEntry.expires_at > now),
                    )
                    .order_by(WhitelistEntry.added_at.desc())
                    .limit(limit)
                ).scalars()
                return list(rows)
        except SQLAlchemyError as exc:
            logger.error("Error listing whitelist for tenant %s: %s", tenant_id, exc)
            return []

    # --- Housekeeping ---------------------------------------------------------------
    async def cleanup(self, tenant_id: str | None = None) -> tuple[int, int]:
        """Delete expired blocks and whitelist entries, then reload both caches.

        Returns ``(blocks_removed, whitelist_removed)``.
        """
        now = from_epoch(self._clock())
        block_stmt = delete(BlockedIP).where(
            BlockedIP.expires_at.is_not(None), BlockedIP.expires_at < now
        )
        whitelist_stmt = delete(WhitelistEntry).where(
            WhitelistEntry.expires_at.is_not(None), WhitelistEntry.expires_at < now
        )
        if tenant_id is not None:
            block_stmt = block_stmt.where(BlockedIP.tenant_id == tenant_id)
            whitelist_stmt = whitelist_stmt.where(WhitelistEntry.tenant_id == tenant_id)

        db = self._session_factory()
        try:
            blocks_removed = int(db.execute(block_stmt).rowcount or 0)
            whitelist_removed = int(db.execute(whitelist_stmt).rowcount or 0)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Error cleaning up blocks: %s", exc)
            return 0, 0
        finally:
            db.close()

        self._load_blocked()
        self._load_whitelist()
        logger.info(
            "Blocking cleanup removed %d blocks and %d whitelist entries",
            blocks_removed,
            whitelist_removed,
        )
        return blocks_removed, whitelist_removed

    # --- Internals ------------------------------------------------------------------
    def _expired(self, expires_at: datetime | None) -> bool:
        return expires_at is not None and self._clock() > to_epoch(expires_at)

    def _load_blocked(self) -> None:
        now = from_epoch(self._clock())
        try:
            with self._session_factory() as db:
                rows = db.execute(
                    select(BlockedIP).where(
                        or_(BlockedIP.expires_at.is_(None), BlockedIP.expires_at > now)
                    )
                ).scalars()
                self._blocked = {
                    (row.tenant_id, row.ip_address): _CachedBlock.from_row(row) for row in rows
                }
        except SQLAlchemyError as exc:
            logger.error("Error loading blocked IPs: %s", exc)

    def _load_whitelist(self) -> None:
        now = from_epoch(self._clock())
        try:
            with self._session_factory() as db:
                rows = db.execute(
                    select(WhitelistEntry).where(
                        or_(WhitelistEntry.expires_at.is_(None), WhitelistEntry.expires_at > now)
                    )
                ).scalars()
                self._whitelist = {
                    (row.tenant_id, row.ip_address): (
                        ensure_utc(row.expires_at) if row.expires_at else None
                    )
                    for row in rows
                }
        except SQLAlchemyError as exc:
            logger.error("Error loading whitelist: %s", exc)
