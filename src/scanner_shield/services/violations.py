"""Append-only log of rate limit and abuse violations."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scanner_shield.db.time import Clock, from_epoch
from scanner_shield.models import RateLimitViolation
from scanner_shield.models.violation import LIMIT_TYPE_DDOS

logger = logging.getLogger(__name__)


class ViolationLog:
    """Writes and queries ``RateLimitViolation`` rows."""

    def __init__(self, session_factory: Callable[[], Session], clock: Clock = time.time) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def record(
        self,
        tenant_id: str,
        *,
        identifier: str,
        identifier_type: str,
        ip_address: str | None,
        endpoint: str | None,
        method: str | None,
        limit_type: str,
        current_rate: float,
        limit_rate: float,
        action_taken: str,
    ) -> bool:
        """Persist one violation. Storage errors are logged and reported as False."""
        now = from_epoch(self._clock())
        try:
            with self._session_factory() as db:
                db.add(
                    RateLimitViolation(
                        tenant_id=tenant_id,
                        identifier=identifier,
                        identifier_type=identifier_type,
                        ip_address=ip_address,
                        endpoint=endpoint,
                        method=method,
                        limit_type=limit_type,
                        current_rate=float(current_rate),
                        limit_rate=float(limit_rate),
                        timestamp=now,
                        action_taken=action_taken,
                        created_at=now,
                    )
                )
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("Error logging %s violation for %s: %s", limit_type, ip_address, exc)
            return False
        return True

    def list_recent(self, tenant_id: str, limit: int = 100) -> list[RateLimitViolation]:
        """Return the newest violations for a tenant."""
        with self._session_factory() as db:
            rows = db.execute(
                select(RateLimitViolation)
                .where(RateLimitViolation.tenant_id == tenant_id)
                .order_by(RateLimitViolation.timestamp.desc())
                .limit(limit)
            ).scalars()
            return list(rows)

    def ddos_stats(self, tenant_id: str, hours: int = 24) -> list[dict[str, Any]]:
        """Aggregate DDoS mitigations by action over the last ``hours`` hours."""
        cutoff = from_epoch(self._clock()) - timedelta(hours=hours)
        try:
            with self._session_factory() as db:
                rows = db.execute(
                    select(
                        RateLimitViolation.action_taken,
                        func.count(),
                        func.count(func.distinct(RateLimitViolation.ip_address)),
                    )
                    .where(
                        RateLimitViolation.tenant_id == tenant_id,
                        RateLimitViolation.limit_type == LIMIT_TYPE_DDOS,
                        RateLimitViolation.timestamp > cutoff,
                    )
                    .group_by(RateLimitViolation.action_taken)
                ).all()
        except SQLAlchemyError as exc:
            logger.error("Error getting DDoS stats for tenant %s: %s", tenant_id, exc)
            return []
        return [
            {
                "action_taken": action,
                "total_ddos_blocks": int(total or 0),
                "unique_ips": int(unique or 0),
            }
            for (action, total, unique) in rows
        ]

