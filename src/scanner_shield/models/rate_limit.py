# src/scanner_shield/models/rate_limit.py
"""Models backing per-tenant rate limit configuration and token buckets."""

from __future__ import annotations

import secrets
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from scanner_shield.db.session import Base
from scanner_shield.db.time import utcnow

IDENTIFIER_TYPE_IP = "ip"
IDENTIFIER_TYPE_USER = "user"
IDENTIFIER_TYPE_GLOBAL = "global"
IDENTIFIER_TYPES = (IDENTIFIER_TYPE_IP, IDENTIFIER_TYPE_USER, IDENTIFIER_TYPE_GLOBAL)


def new_row_id() -> str:
    """Return a random 32-character hex identifier for a new row."""
    return secrets.token_hex(16)


class RateLimitConfig(Base):
    """Per-tenant limits and detector thresholds; one row per tenant, no history."""

    __tablename__ = "rate_limit_config"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_row_id)
    tenant_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True, index=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    global_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    global_window: Mapped[int] = mapped_column(Integer, nullable=False)
    per_ip_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    per_ip_window: Mapped[int] = mapped_column(Integer, nullable=False)
    per_user_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    per_user_window: Mapped[int] = mapped_column(Integer, nullable=False)
    burst_allowance: Mapped[int] = mapped_column(Integer, nullable=False)
    ddos_threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    ddos_window: Mapped[int] = mapped_column(Integer, nullable=False)
    brute_force_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    brute_force_window: Mapped[int] = mapped_column(Integer, nullable=False)
    block_duration: Mapped[int] = mapped_column(Integer, nullable=False)
    auto_block_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class RateLimitRecord(Base):
    """Token bucket state for one (tenant, identifier, type, endpoint) identity."""

    __tablename__ = "rate_limits"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "identifier", "identifier_type", "endpoint",
            name="uq_rate_limits_identity",
        ),
        Index("ix_rate_limits_lookup", "tenant_id", "identifier", "identifier_type"),
        Index("ix_rate_limits_updated", "tenant_id", "updated_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_row_id)
    tenant_id: Mapped[str] = mapped_column(Text, nullable=False)
    identifier: Mapped[str] = mapped_column(Text, nullable=False)
    # 'ip', 'user' or 'global'
    identifier_type: Mapped[str] = mapped_column(String(16), nullable=False)
    endpoint: Mapped[str | None] = mapped_column(Text, nullable=True)
    tokens_remaining: Mapped[float] = mapped_column(Float, nullable=False)
    last_refill: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # Monotonic; never reset by refills.
    requests_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
