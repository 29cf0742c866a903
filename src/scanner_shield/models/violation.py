# src/scanner_shield/models/violation.py
"""Append-only audit trail of rate limit and abuse detections."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from scanner_shield.db.session import Base
from scanner_shield.db.time import utcnow
from scanner_shield.models.rate_limit import new_row_id

LIMIT_TYPE_RATE = "rate"
LIMIT_TYPE_BRUTE_FORCE = "brute_force"
LIMIT_TYPE_DDOS = "ddos"


class RateLimitViolation(Base):
    """Record written whenever a threshold breach or automatic block occurs."""

    __tablename__ = "rate_limit_violations"
    __table_args__ = (
        Index("ix_violations_tenant_ts", "tenant_id", "timestamp"),
        Index("ix_violations_ip", "ip_address"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_row_id)
    tenant_id: Mapped[str] = mapped_column(Text, nullable=False)
    identifier: Mapped[str] = mapped_column(Text, nullable=False)
    identifier_type: Mapped[str] = mapped_column(String(16), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    endpoint: Mapped[str | None] = mapped_column(Text, nullable=True)
    method: Mapped[str | None] = mapped_column(String(16), nullable=True)
    # 'rate', 'brute_force' or 'ddos'
    limit_type: Mapped[str] = mapped_column(String(20), nullable=False)
    current_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    limit_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    action_taken: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
