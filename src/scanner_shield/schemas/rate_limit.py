# src/scanner_shield/schemas/rate_limit.py
"""Rate limiting admin API schemas."""

from __future__ import annotations

import ipaddress
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _validate_ip(value: str) -> str:
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError as err:
        raise ValueError(f"Invalid IP address: {value}") from err


class RateLimitConfigResponse(BaseModel):
    """Effective rate limit configuration for the caller's tenant."""

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


class RateLimitConfigUpdate(BaseModel):
    """Partial configuration update; omitted fields keep their current value."""

    enabled: bool | None = None
    global_limit: int | None = Field(default=None, ge=1)
    global_window: int | None = Field(default=None, ge=1, description="Seconds")
    per_ip_limit: int | None = Field(default=None, ge=1)
    per_ip_window: int | None = Field(default=None, ge=1, description="Seconds")
    per_user_limit: int | None = Field(default=None, ge=1)
    per_user_window: int | None = Field(default=None, ge=1, description="Seconds")
    burst_allowance: int | None = Field(default=None, ge=0)
    ddos_threshold: int | None = Field(default=None, ge=1)
    ddos_window: int | None = Field(default=None, ge=1, description="Seconds")
    brute_force_attempts: int | None = Field(default=None, ge=1)
    brute_force_window: int | None = Field(default=None, ge=1, description="Seconds")
    block_duration: int | None = Field(default=None, ge=1, description="Seconds")
    auto_block_enabled: bool | None = None


class StatusResponse(BaseModel):
    enabled: bool
    limits: dict[str, str]
    protection: dict[str, bool]


class ViolationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    identifier: str
    identifier_type: str
    ip_address: str | None
    endpoint: str | None
    method: str | None
    limit_type: str
    current_rate: float
    limit_rate: float
    timestamp: datetime
    action_taken: str


class BlockedIPResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ip_address: str
    reason: str
    block_type: str
    blocked_at: datetime
    expires_at: datetime | None
    blocked_by: str
    auto_blocked: bool
    violation_count: int


class WhitelistEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ip_address: str
    description: str
    added_by: str
    added_at: datetime
    expires_at: datetime | None


class BlockIPRequest(BaseModel):
    """Schema for manually blocking an IP address."""

    ip: str = Field(..., description="IPv4 or IPv6 address to block")
    reason: str | None = Field(default=None, max_length=500)
    duration: int | None = Field(
        default=3600, ge=1, description="Block duration in seconds; null blocks permanently"
    )

    @field_validator("ip")
    @classmethod
    def check_ip(cls, value: str) -> str:
        return _validate_ip(value)


class UnblockIPRequest(BaseModel):
    ip: str

    @field_validator("ip")
    @classmethod
    def check_ip(cls, value: str) -> str:
        return _validate_ip(value)


class WhitelistRequest(BaseModel):
    """Schema for adding an IP address to the whitelist."""

    ip: str = Field(..., description="IPv4 or IPv6 address to whitelist")
    description: str = Field(default="", max_length=500)
    duration: int | None = Field(
        default=None, ge=1, description="Whitelist duration in seconds; null never expires"
    )

    @field_validator("ip")
    @classmethod
    def check_ip(cls, value: str) -> str:
        return _validate_ip(value)


class OperationResult(BaseModel):
    """Outcome of a block list or whitelist mutation."""

    success: bool
    existing: bool = False
    reason: str | None = None
    error: str | None = None
    id: str | None = None
    expires_at: datetime | None = None


class ResetRequest(BaseModel):
    identifier: str = Field(..., min_length=1)
    identifier_type: Literal["ip", "user", "global"]
    endpoint: str | None = None


class ResetResponse(BaseModel):
    success: bool
    removed: int


class LoginAttemptRequest(BaseModel):
    """Authentication outcome reported by a login endpoint."""

    identifier: str = Field(..., min_length=1, description="Username or account identifier")
    ip: str
    success: bool
    endpoint: str = "/login"

    @field_validator("ip")
    @classmethod
    def check_ip(cls, value: str) -> str:
        return _validate_ip(value)


class LoginAttemptResponse(BaseModel):
    blocked: bool
    attempts: int
    threshold: int
    under_attack: bool


class DDoSCheckResponse(BaseModel):
    under_attack: bool
    rate: float
    threshold: float
    confidence: float
    attack_type: str | None
    mitigated: bool
    blocked_ips: int


class TopIPResponse(BaseModel):
    ip: str
    requests: int
    rate: float


class StatsResponse(BaseModel):
    rate_limits: list[dict[str, str | int | float]]
    top_ips: list[TopIPResponse]
    ddos: list[dict[str, str | int]]
    brute_force: dict[str, int]
