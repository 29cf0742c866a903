"""Per-tenant rate limit configuration.

Configuration rows are created lazily the first time a tenant is seen, using
the defaults from application settings. Callers never deal with optional
fields: every read returns a fully populated, immutable ``RateLimitPolicy``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass, fields, replace
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from scanner_shield.core.settings import Settings, settings
from scanner_shield.db.time import utcnow
from scanner_shield.models import RateLimitConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    """Explicit, fully populated rate limit configuration for one tenant."""

    enabled: bool
    global_limit: int
    global_window: int
    per_ip_limit: int
    per_ip_window: int
    per_user_limit: int
    per_user_window: int
    burst_allowance: int
    ddos_threshold: int
    ddos_window: int
    brute_force_attempts: int
    brute_force_window: int
    block_duration: int
    auto_block_enabled: bool

    @property
    def per_ip_rate(self) -> float:
        """Sustained per-IP request rate in requests per second (burst excluded)."""
        return self.per_ip_limit / self.per_ip_window

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: RateLimitConfig) -> RateLimitPolicy:
        """Build a policy from a persisted configuration row."""
        return cls(**{f.name: getattr(row, f.name) for f in fields(cls)})


POLICY_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(RateLimitPolicy))


def default_policy(app_settings: Settings | None = None) -> RateLimitPolicy:
    """Return the policy applied to tenants that have no configuration yet."""
    s = app_settings or settings
    return RateLimitPolicy(
        enabled=s.default_rate_limit_enabled,
        global_limit=s.default_global_limit,
        global_window=s.default_global_window,
        per_ip_limit=s.default_per_ip_limit,
        per_ip_window=s.default_per_ip_window,
        per_user_limit=s.default_per_user_limit,
        per_user_window=s.default_per_user_window,
        burst_allowance=s.default_burst_allowance,
        ddos_threshold=s.default_ddos_threshold,
        ddos_window=s.default_ddos_window,
        brute_force_attempts=s.default_brute_force_attempts,
        brute_force_window=s.default_brute_force_window,
        block_duration=s.default_block_duration,
        auto_block_enabled=s.default_auto_block_enabled,
    )


class ConfigService:
    """Loads, lazily creates and updates tenant rate limit configuration."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        defaults: RateLimitPolicy | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.defaults = defaults or default_policy()

    def get_policy(self, tenant_id: str) -> RateLimitPolicy:
        """Return the tenant's policy, creating the default row when absent.

        Falls back to in-memory defaults if storage cannot be read so callers
        always get a usable configuration.
        """
        try:
            with self._session_factory() as db:
                row = self._get_or_create(db, tenant_id)
                return RateLimitPolicy.from_row(row)
        except SQLAlchemyError as exc:
            logger.error("Error loading rate limit config for tenant %s: %s", tenant_id, exc)
            return self.defaults

    def update_policy(self, tenant_id: str, changes: Mapping[str, Any]) -> RateLimitPolicy:
        """Apply a partial update to a tenant's configuration and return the result.

        Unknown keys are ignored. Storage errors propagate to the caller.
        """
        updates = {key: value for key, value in changes.items() if key in POLICY_FIELDS}
        with self._session_factory() as db:
            row = self._get_or_create(db, tenant_id)
            merged = replace(RateLimitPolicy.from_row(row), **updates)
            for key, value in merged.to_dict().items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            db.commit()
            logger.info("Updated rate limit config for tenant %s: %s", tenant_id, sorted(updates))
            return merged

    def _get_or_create(self, db: Session, tenant_id: str) -> RateLimitConfig:
        row = db.execute(
            select(RateLimitConfig).where(RateLimitConfig.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if row is not None:
            return row

        row = RateLimitConfig(tenant_id=tenant_id, **self.defaults.to_dict())
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            # Another request created the row first.
            db.rollback()
            return db.execute(
                select(RateLimitConfig).where(RateLimitConfig.tenant_id == tenant_id)
            ).scalar_one()
        logger.info("Created default rate limit config for tenant %s", tenant_id)
        return row
