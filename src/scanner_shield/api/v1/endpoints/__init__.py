# src/scanner_shield/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .rate_limiting import router as rate_limiting_router

__all__ = [
    "rate_limiting_router",
]
