"""create protection tables

Revision ID: 5c1e2a9d7b40
Revises:
Create Date: 2026-10-19 09:12:44.318201

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1e2a9d7b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create configuration, bucket, block list and violation tables."""
    op.create_table(
        "rate_limit_config",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("tenant_id", sa.Text(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("global_limit", sa.Integer(), nullable=False),
        sa.Column("global_window", sa.Integer(), nullable=False),
        sa.Column("per_ip_limit", sa.Integer(), nullable=False),
        sa.Column("per_ip_window", sa.Integer(), nullable=False),
        sa.Column("per_user_limit", sa.Integer(), nullable=False),
        sa.Column("per_user_window", sa.Integer(), nullable=False),
        sa.Column("burst_allowance", sa.Integer(), nullable=False),
        sa.Column("ddos_threshold", sa.Integer(), nullable=False),
        sa.Column("ddos_window", sa.Integer(), nullable=False),
        sa.Column("brute_force_attempts", sa.Integer(), nullable=False),
        sa.Column("brute_force_window", sa.Integer(), nullable=False),
        sa.Column("block_duration", sa.Integer(), nullable=False),
        sa.Column("auto_block_enabled", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_rate_limit_config_tenant_id", "rate_limit_config", ["tenant_id"], unique=True
    )

    op.create_table(
        "rate_limits",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("tenant_id", sa.Text(), nullable=False),
        sa.Column("identifier", sa.Text(), nullable=False),
        sa.Column("identifier_type", sa.String(length=16), nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=True),
        sa.Column("tokens_remaining", sa.Float(), nullable=False),
        sa.Column("last_refill", sa.DateTime(timezone=True), nullable=False),
        sa.Column("requests_count", sa.Integer(), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "tenant_id", "identifier", "identifier_type", "endpoint",
            name="uq_rate_limits_identity",
        ),
    )
    op.create_index(
        "ix_rate_limits_lookup", "rate_limits", ["tenant_id", "identifier", "identifier_type"]
    )
    op.create_index("ix_rate_limits_updated", "rate_limits", ["tenant_id", "updated_at"])

    op.create_table(
        "blocked_ips",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("tenant_id", sa.Text(), nullable=False),
        sa.Column("ip_address", sa.String(length=45), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("block_type", sa.String(length=20), nullable=False),
        sa.Column("blocked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("blocked_by", sa.Text(), nullable=False),
        sa.Column("auto_blocked", sa.Boolean(), nullable=False),
        sa.Column("violation_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "ip_address", name="uq_blocked_ips_tenant_ip"),
    )
    op.create_index("ix_blocked_ips_tenant_id", "blocked_ips", ["tenant_id"])
    op.create_index("ix_blocked_ips_expires", "blocked_ips", ["expires_at"])

    op.create_table(
        "ip_whitelist",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("tenant_id", sa.Text(), nullable=False),
        sa.Column("ip_address", sa.String(length=45), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("added_by", sa.Text(), nullable=False),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "ip_address", name="uq_ip_whitelist_tenant_ip"),
    )
    op.create_index("ix_ip_whitelist_tenant_id", "ip_whitelist", ["tenant_id"])
    op.create_index("ix_ip_whitelist_expires", "ip_whitelist", ["expires_at"])

    op.create_table(
        "rate_limit_violations",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("tenant_id", sa.Text(), nullable=False),
        sa.Column("identifier", sa.Text(), nullable=False),
        sa.Column("identifier_type", sa.String(length=16), nullable=False),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("endpoint", sa.Text(), nullable=True),
        sa.Column("method", sa.String(length=16), nullable=True),
        sa.Column("limit_type", sa.String(length=20), nullable=False),
        sa.Column("current_rate", sa.Float(), nullable=False),
        sa.Column("limit_rate", sa.Float(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("action_taken", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_violations_tenant_ts", "rate_limit_violations", ["tenant_id", "timestamp"]
    )
    op.create_index("ix_violations_ip", "rate_limit_violations", ["ip_address"])


def downgrade() -> None:
    """Drop all protection tables."""
    op.drop_index("ix_violations_ip", table_name="rate_limit_violations")
    op.drop_index("ix_violations_tenant_ts", table_name="rate_limit_violations")
    op.drop_table("rate_limit_violations")
    op.drop_index("ix_ip_whitelist_expires", table_name="ip_whitelist")
    op.drop_index("ix_ip_whitelist_tenant_id", table_name="ip_whitelist")
    op.drop_table("ip_whitelist")
    op.drop_index("ix_blocked_ips_expires", table_name="blocked_ips")
    op.drop_index("ix_blocked_ips_tenant_id", table_name="blocked_ips")
    op.drop_table("blocked_ips")
    op.drop_index("ix_rate_limits_updated", table_name="rate_limits")
    op.drop_index("ix_rate_limits_lookup", table_name="rate_limits")
    op.drop_table("rate_limits")
    op.drop_index("ix_rate_limit_config_tenant_id", table_name="rate_limit_config")
    op.drop_table("rate_limit_config")
