"""Persisted token bucket rate limiting.

Each identity ``(tenant, identifier, identifier_type, endpoint)`` owns one
bucket row. Buckets are refilled lazily on every check from the time elapsed
since the last refill; there is no background timer.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scanner_shield.core.errors import InvalidIdentifierTypeError
from scanner_shield.db.time import Clock, from_epoch, to_epoch
from scanner_shield.models import RateLimitRecord
from scanner_shield.models.rate_limit import (
    IDENTIFIER_TYPE_GLOBAL,
    IDENTIFIER_TYPE_IP,
    IDENTIFIER_TYPE_USER,
)
from scanner_shield.services.config import ConfigService, RateLimitPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    """Admission decision for a single request.

    ``limit``/``remaining``/``reset`` are None when limiting is disabled for the
    tenant or the limiter failed open.
    """

    allowed: bool
    remaining: int | None = None
    limit: int | None = None
    reset: datetime | None = None
    retry_after: int | None = None


def calculate_limits(
    identifier_type: str,
    policy: RateLimitPolicy,
    limit_override: int | None = None,
    window_override: int | None = None,
) -> tuple[int, int]:
    """Return ``(limit, window_seconds)`` for an identity.

    An override applies only when both values are given. IP and user buckets
    get the tenant's burst allowance on top of their sustained limit.
    """
    if limit_override and window_override:
        return limit_override, window_override
    if identifier_type == IDENTIFIER_TYPE_IP:
        return policy.per_ip_limit + policy.burst_allowance, policy.per_ip_window
    if identifier_type == IDENTIFIER_TYPE_USER:
        return policy.per_user_limit + policy.burst_allowance, policy.per_user_window
    if identifier_type == IDENTIFIER_TYPE_GLOBAL:
        return policy.global_limit, policy.global_window
    raise InvalidIdentifierTypeError(identifier_type)


def refill_tokens(record: RateLimitRecord, limit: int, window: int, now: float) -> int:
    """Credit whole tokens earned since the last refill and return how many.

    Fractional accrual is discarded; ``last_refill`` only advances when at
    least one token is credited, so partial progress carries to the next check.
    """
    elapsed = max(0.0, now - to_epoch(record.last_refill))
    tokens_to_add = math.floor(elapsed * limit / window)
    if tokens_to_add > 0:
        record.tokens_remaining = min(record.tokens_remaining + tokens_to_add, limit)
        record.last_refill = from_epoch(now)
    # Keep the bucket within bounds if the tenant's limit was lowered.
    record.tokens_remaining = min(record.tokens_remaining, limit)
    return tokens_to_add


class RateLimiter:
    """Tenant-scoped token bucket limiter that fails open on internal errors."""

    algorithm = "token_bucket"

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config_service: ConfigService,
        clock: Clock = time.time,
    ) -> None:
        self._session_factory = session_factory
        self._config = config_service
        self._clock = clock

    async def check_limit(
        self,
        tenant_id: str,
        identifier: str,
        identifier_type: str,
        *,
        endpoint: str | None = None,
        limit_override: int | None = None,
        window_override: int | None = None,
    ) -> RateLimitResult:
        """Admit or reject one request for the identity and consume a token if admitted."""
        if identifier_type not in (IDENTIFIER_TYPE_IP, IDENTIFIER_TYPE_USER, IDENTIFIER_TYPE_GLOBAL):
            raise InvalidIdentifierTypeError(identifier_type)

        try:
            policy = self._config.get_policy(tenant_id)
            if not policy.enabled:
                return RateLimitResult(allowed=True)

            limit, window = calculate_limits(
                identifier_type, policy, limit_override, window_override
            )
            now = self._clock()
            with self._session_factory() as db:
                record = self._get_or_create_record(
                    db, tenant_id, identifier, identifier_type, endpoint, limit, now
                )
                refill_tokens(record, limit, window, now)
                reset_at = from_epoch(to_epoch(record.last_refill) + window)

                if record.tokens_remaining > 0:
                    record.tokens_remaining -= 1
                    record.requests_count += 1
                    record.updated_at = from_epoch(now)
                    remaining = int(record.tokens_remaining)
                    db.commit()
                    return RateLimitResult(
                        allowed=True,
                        remaining=remaining,
                        limit=limit,
                        reset=reset_at,
                    )

                retry_after = max(1, math.ceil(to_epoch(reset_at) - now))
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    limit=limit,
                    reset=reset_at,
                    retry_after=retry_after,
                )
        except Exception:
            # Rate limiting must never take the service down.
            logger.exception(
                "Error checking rate limit for %s:%s (tenant %s); allowing request",
                identifier_type,
                identifier,
                tenant_id,
            )
            return RateLimitResult(allowed=True)

    async def reset_limit(
        self,
        tenant_id: str,
        identifier: str,
        identifier_type: str,
        endpoint: str | None = None,
    ) -> int:
        """Delete the identity's bucket(s); without an endpoint every bucket goes.

        Returns the number of rows removed.
        """
        stmt = delete(RateLimitRecord).where(
            RateLimitRecord.tenant_id == tenant_id,
            RateLimitRecord.identifier == identifier,
            RateLimitRecord.identifier_type == identifier_type,
        )
        if endpoint is not None:
            stmt = stmt.where(RateLimitRecord.endpoint == endpoint)

        with self._session_factory() as db:
            result = db.execute(stmt)
            db.commit()
        logger.info("Reset limit for %s:%s (tenant %s)", identifier_type, identifier, tenant_id)
        return int(result.rowcount or 0)

    async def get_stats(
        self, tenant_id: str, identifier_type: str | None = None
    ) -> list[dict[str, Any]]:
        """Aggregate bucket counts and usage per identifier type."""
        stmt = (
            select(
                RateLimitRecord.identifier_type,
                func.count(),
                func.sum(RateLimitRecord.requests_count),
                func.avg(RateLimitRecord.tokens_remaining),
            )
            .where(RateLimitRecord.tenant_id == tenant_id)
            .group_by(RateLimitRecord.identifier_type)
        )
        if identifier_type is not None:
            stmt = stmt.where(RateLimitRecord.identifier_type == identifier_type)

        try:
            with self._session_factory() as db:
                rows = db.execute(stmt).all()
        except SQLAlchemyError as exc:
            logger.error("Error getting rate limit stats for tenant %s: %s", tenant_id, exc)
            return []

        return [
            {
                "identifier_type": id_type,
                "total_records": int(total or 0),
                "total_requests": int(requests or 0),
                "avg_tokens_remaining": float(avg_tokens or 0.0),
            }
            for (id_type, total, requests, avg_tokens) in rows
        ]

    async def cleanup(self, tenant_id: str | None, older_than_hours: int = 24) -> int:
        """Delete buckets not touched within ``older_than_hours``; returns rows removed.

        A ``tenant_id`` of None cleans every tenant.
        """
        cutoff = from_epoch(self._clock()) - timedelta(hours=older_than_hours)
        stmt = delete(RateLimitRecord).where(RateLimitRecord.updated_at < cutoff)
        if tenant_id is not None:
            stmt = stmt.where(RateLimitRecord.tenant_id == tenant_id)
        try:
            with self._session_factory() as db:
                result = db.execute(stmt)
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("Error cleaning up rate limits for tenant %s: %s", tenant_id, exc)
            return 0

        deleted = int(result.rowcount or 0)
        logger.info("Cleaned up %d stale rate limit records for tenant %s", deleted, tenant_id)
        return deleted

    def _get_or_create_record(
        self,
        db: Session,
        tenant_id: str,
        identifier: str,
        identifier_type: str,
        endpoint: str | None,
        limit: int,
        now: float,
    ) -> RateLimitRecord:
        endpoint_clause = (
            RateLimitRecord.endpoint.is_(None)
            if endpoint is None
            else RateLimitRecord.endpoint == endpoint
        )
        record = db.execute(
            select(RateLimitRecord).where(
                RateLimitRecord.tenant_id == tenant_id,
                RateLimitRecord.identifier == identifier,
                RateLimitRecord.identifier_type == identifier_type,
                endpoint_clause,
            )
        ).scalars().first()
        if record is not None:
            return record

        now_dt = from_epoch(now)
        record = RateLimitRecord(
            tenant_id=tenant_id,
            identifier=identifier,
            identifier_type=identifier_type,
            endpoint=endpoint,
            tokens_remaining=limit,
            last_refill=now_dt,
            requests_count=0,
            window_start=now_dt,
            created_at=now_dt,
            updated_at=now_dt,
        )
        db.add(record)
        db.flush()
        return record
