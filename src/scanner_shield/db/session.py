"""Database engine and session factory for the protection tables."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from scanner_shield.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


# Populate Base.metadata before create_all or Alembic reads it.
import scanner_shield.models  # noqa: E402,F401


def build_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine suited to ``url``.

    SQLite connections are shared between the request thread pool and the
    maintenance worker, so the same-thread check is off. An in-memory SQLite
    database only exists on one connection and gets a ``StaticPool``.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, pool_pre_ping=True, echo=echo)

    options: dict = {"connect_args": {"check_same_thread": False}, "echo": echo}
    if parsed.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
    return create_engine(url, **options)


engine = build_engine(settings.effective_database_url, echo=settings.sql_debug)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_tables() -> None:
    """Create the protection tables that do not exist yet."""
    Base.metadata.create_all(bind=engine)
