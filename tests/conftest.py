# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from dataclasses import replace
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

os.environ.setdefault("PYTEST_RUNNING", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-scanner-shield")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CLEANUP_ENABLED", "false")

from scanner_shield.core.security import create_access_token
from scanner_shield.core.settings import Settings
from scanner_shield.db.session import Base, build_engine
from scanner_shield.main import app as fastapi_app
from scanner_shield.services.blocking import BlockingManager
from scanner_shield.services.config import ConfigService, RateLimitPolicy, default_policy
from scanner_shield.services.events import RecordingEventSink
from scanner_shield.services.ip_tracker import IPTracker
from scanner_shield.services.protection import ProtectionService, set_protection_service
from scanner_shield.services.violations import ViolationLog

TEST_DB_URL = "sqlite://"
START_TIME = 1_700_000_000.0

_TEST_SETTINGS_INSTANCE = Settings()


class FakeClock:
    """Deterministic epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = START_TIME) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = build_engine(TEST_DB_URL)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Iterator[Callable[[], Session]]:
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    try:
        yield factory
    finally:
        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def db_session(session_factory: Callable[[], Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Provide a Settings instance aligned with runtime configuration."""
    return _TEST_SETTINGS_INSTANCE


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def events() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture()
def make_policy(test_settings: Settings) -> Callable[..., RateLimitPolicy]:
    """Build a policy from the defaults with selected fields overridden."""

    def _make(**overrides: Any) -> RateLimitPolicy:
        return replace(default_policy(test_settings), **overrides)

    return _make


@pytest.fixture()
def config_service(
    session_factory: Callable[[], Session], test_settings: Settings
) -> ConfigService:
    return ConfigService(session_factory, default_policy(test_settings))


@pytest.fixture()
def violations(session_factory: Callable[[], Session], clock: FakeClock) -> ViolationLog:
    return ViolationLog(session_factory, clock)


@pytest.fixture()
def tracker(clock: FakeClock) -> IPTracker:
    return IPTracker(clock)


@pytest_asyncio.fixture()
async def blocking(
    session_factory: Callable[[], Session],
    clock: FakeClock,
    events: RecordingEventSink,
) -> BlockingManager:
    manager = BlockingManager(session_factory, clock, events)
    await manager.init()
    return manager


@pytest_asyncio.fixture()
async def protection_service(
    session_factory: Callable[[], Session],
    clock: FakeClock,
    events: RecordingEventSink,
    test_settings: Settings,
) -> ProtectionService:
    service = ProtectionService(
        session_factory, clock=clock, event_sink=events, app_settings=test_settings
    )
    await service.init()
    return service


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def api_service(
    session_factory: Callable[[], Session],
    clock: FakeClock,
    events: RecordingEventSink,
    test_settings: Settings,
) -> Iterator[ProtectionService]:
    """Install a protection service backed by the test database for the app."""
    service = ProtectionService(
        session_factory, clock=clock, event_sink=events, app_settings=test_settings
    )
    set_protection_service(service)
    try:
        yield service
    finally:
        set_protection_service(None)


@pytest.fixture()
def client(app: FastAPI, api_service: ProtectionService) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def admin_token() -> str:
    return create_access_token("admin", "tenant-a")


@pytest.fixture()
def auth_headers(admin_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {admin_token}"}
