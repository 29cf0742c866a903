# src/scanner_shield/models/__init__.py
"""SQLAlchemy models for the Scanner Shield service."""

from .blocking import BlockedIP, WhitelistEntry
from .rate_limit import RateLimitConfig, RateLimitRecord
from .violation import RateLimitViolation

__all__ = [
    "BlockedIP", "WhitelistEntry",
    "RateLimitConfig", "RateLimitRecord",
    "RateLimitViolation",
]
