"""Unit tests for the ORM models defined in scanner_shield.models.

These tests verify basic mapping correctness: table names, uniqueness
constraints the services rely on, and column defaults.
"""

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from scanner_shield.db.session import Base, build_engine
from scanner_shield.db.time import from_epoch
from scanner_shield.models import (
    BlockedIP,
    RateLimitConfig,
    RateLimitRecord,
    RateLimitViolation,
    WhitelistEntry,
)


def test_table_names():
    """Model classes expose expected __tablename__ values."""
    assert RateLimitConfig.__tablename__ == "rate_limit_config"
    assert RateLimitRecord.__tablename__ == "rate_limits"
    assert RateLimitViolation.__tablename__ == "rate_limit_violations"
    assert BlockedIP.__tablename__ == "blocked_ips"
    assert WhitelistEntry.__tablename__ == "ip_whitelist"


def test_one_config_row_per_tenant(db_session, make_policy):
    values = make_policy().to_dict()
    db_session.add(RateLimitConfig(tenant_id="tenant-a", **values))
    db_session.commit()
    db_session.add(RateLimitConfig(tenant_id="tenant-a", **values))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_one_block_per_tenant_and_ip(db_session):
    now = from_epoch(1_700_000_000)
    for tenant in ("tenant-a", "tenant-b"):
        db_session.add(
            BlockedIP(tenant_id=tenant, ip_address="192.0.2.1", reason="x", block_type="manual", blocked_at=now)
        )
    db_session.commit()

    db_session.add(
        BlockedIP(tenant_id="tenant-a", ip_address="192.0.2.1", reason="y", block_type="manual", blocked_at=now)
    )
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_block_defaults(db_session):
    row = BlockedIP(
        tenant_id="tenant-a",
        ip_address="192.0.2.9",
        reason="manual",
        block_type="manual",
        blocked_at=from_epoch(1_700_000_000),
    )
    db_session.add(row)
    db_session.commit()

    assert len(row.id) == 32
    assert row.violation_count == 1
    assert row.auto_blocked is False
    assert row.expires_at is None


def test_metadata_holds_only_protection_tables():
    """Alembic autogenerates against exactly these tables."""
    assert set(Base.metadata.tables) == {
        "rate_limit_config",
        "rate_limits",
        "rate_limit_violations",
        "blocked_ips",
        "ip_whitelist",
    }


def test_in_memory_sqlite_engine_shares_one_connection():
    memory = build_engine("sqlite://")
    on_disk = build_engine("sqlite:///./shield-test.db")
    try:
        assert isinstance(memory.pool, StaticPool)
        assert not isinstance(on_disk.pool, StaticPool)
    finally:
        memory.dispose()
        on_disk.dispose()
