# src/scanner_shield/services/__init__.py
"""Abuse-protection services for Scanner Shield."""

from .blocking import BlockingManager
from .brute_force import BruteForceDetector
from .config import ConfigService, RateLimitPolicy
from .ddos import DDoSProtector
from .ip_tracker import IPTracker
from .protection import ProtectionService, get_protection_service
from .rate_limiter import RateLimiter

__all__ = [
    "BlockingManager",
    "BruteForceDetector",
    "ConfigService",
    "RateLimitPolicy",
    "DDoSProtector",
    "IPTracker",
    "ProtectionService",
    "get_protection_service",
    "RateLimiter",
]
