# src/scanner_shield/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .rate_limit import (
    BlockedIPResponse,
    BlockIPRequest,
    DDoSCheckResponse,
    LoginAttemptRequest,
    LoginAttemptResponse,
    OperationResult,
    RateLimitConfigResponse,
    RateLimitConfigUpdate,
    ResetRequest,
    ResetResponse,
    StatsResponse,
    StatusResponse,
    UnblockIPRequest,
    ViolationResponse,
    WhitelistEntryResponse,
    WhitelistRequest,
)

__all__ = [
    "BlockedIPResponse", "BlockIPRequest",
    "DDoSCheckResponse",
    "LoginAttemptRequest", "LoginAttemptResponse",
    "OperationResult",
    "RateLimitConfigResponse", "RateLimitConfigUpdate",
    "ResetRequest", "ResetResponse",
    "StatsResponse", "StatusResponse",
    "UnblockIPRequest",
    "ViolationResponse",
    "WhitelistEntryResponse", "WhitelistRequest",
]
