# src/scanner_shield/models/blocking.py
"""Models for the per-tenant IP deny and allow lists."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from scanner_shield.db.session import Base
from scanner_shield.db.time import utcnow
from scanner_shield.models.rate_limit import new_row_id

BLOCK_TYPE_MANUAL = "manual"
BLOCK_TYPE_BRUTE_FORCE = "brute_force"
BLOCK_TYPE_DDOS = "ddos"


class BlockedIP(Base):
    """An IP denied for a tenant, optionally until ``expires_at``."""

    __tablename__ = "blocked_ips"
    __table_args__ = (
        UniqueConstraint("tenant_id", "ip_address", name="uq_blocked_ips_tenant_ip"),
        Index("ix_blocked_ips_expires", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_row_id)
    tenant_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    block_type: Mapped[str] = mapped_column(String(20), nullable=False, default=BLOCK_TYPE_MANUAL)
    blocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # NULL means the block is permanent.
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    blocked_by: Mapped[str] = mapped_column(Text, nullable=False, default="system")
    auto_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    violation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class WhitelistEntry(Base):
    """An IP that bypasses all blocking and rate limiting for a tenant."""

    __tablename__ = "ip_whitelist"
    __table_args__ = (
        UniqueConstraint("tenant_id", "ip_address", name="uq_ip_whitelist_tenant_ip"),
        Index("ix_ip_whitelist_expires", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_row_id)
    tenant_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    added_by: Mapped[str] = mapped_column(Text, nullable=False, default="admin")
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
