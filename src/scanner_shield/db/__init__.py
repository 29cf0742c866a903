# src/scanner_shield/db/__init__.py
"""Database configuration and utilities."""

from .session import SessionLocal, build_engine

__all__ = ["build_engine", "SessionLocal"]
