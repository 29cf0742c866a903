# src/scanner_shield/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import rate_limiting_router

__all__ = [
    "rate_limiting_router",
]
