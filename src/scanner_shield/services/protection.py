"""Composition root for the abuse-protection components.

``ProtectionService`` owns one instance of every component, shares a single
clock, session factory and event sink between them, and runs the per-request
admission sequence used by the HTTP middleware.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from scanner_shield.core.errors import ServiceNotInitializedError
from scanner_shield.core.settings import Settings, settings
from scanner_shield.db.session import SessionLocal
from scanner_shield.db.time import Clock
from scanner_shield.models.rate_limit import IDENTIFIER_TYPE_IP, IDENTIFIER_TYPE_USER
from scanner_shield.services.blocking import BlockingManager, BlockStatus
from scanner_shield.services.brute_force import BruteForceDetector
from scanner_shield.services.config import ConfigService, default_policy
from scanner_shield.services.ddos import DDoSCheckResult, DDoSProtector
from scanner_shield.services.events import EventSink, LoggingEventSink
from scanner_shield.services.ip_tracker import IPTracker
from scanner_shield.services.rate_limiter import RateLimiter, RateLimitResult
from scanner_shield.services.violations import ViolationLog

logger = logging.getLogger(__name__)

DECISION_ALLOW = "allow"
DECISION_WHITELISTED = "whitelisted"
DECISION_BLOCKED = "blocked"
DECISION_RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class RequestDecision:
    """Verdict for one inbound request."""

    action: str
    block: BlockStatus | None = None
    limit: RateLimitResult | None = None

    @property
    def allowed(self) -> bool:
        return self.action in (DECISION_ALLOW, DECISION_WHITELISTED)


@dataclass(frozen=True)
class CleanupReport:
    tracker_keys: int
    login_attempt_keys: int
    blocks_removed: int
    whitelist_removed: int
    rate_limit_records: int


class ProtectionService:
    """Owns the tracker, limiter, block lists and detectors for the process."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        clock: Clock = time.time,
        event_sink: EventSink | None = None,
        app_settings: Settings | None = None,
    ) -> None:
        self.settings = app_settings or settings
        self.clock = clock
        self.events = event_sink if event_sink is not None else LoggingEventSink()

        self.config = ConfigService(session_factory, default_policy(self.settings))
        self.violations = ViolationLog(session_factory, clock)
        self.tracker = IPTracker(clock)
        self.rate_limiter = RateLimiter(session_factory, self.config, clock)
        self.blocking = BlockingManager(session_factory, clock, self.events)
        self.brute_force = BruteForceDetector(
            self.config, self.blocking, self.violations, clock, self.events
        )
        self.ddos = DDoSProtector(
            self.config,
            self.blocking,
            self.tracker,
            self.violations,
            clock,
            self.events,
            mitigation_confidence=self.settings.ddos_mitigation_confidence,
        )
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def init(self) -> None:
        """Load persisted block lists; must run before requests are evaluated."""
        await self.blocking.init()
        self._initialized = True
        logger.info("Protection service initialized")

    async def shutdown(self) -> None:
        self._initialized = False
        logger.info("Protection service stopped")

    def ensure_initialized(self) -> None:
        if not self._initialized:
            raise ServiceNotInitializedError("Protection service has not been initialized")

    async def evaluate_request(
        self,
        tenant_id: str,
        ip: str,
        endpoint: str,
        method: str,
        user_agent: str | None = None,
        user_id: str | None = None,
    ) -> RequestDecision:
        """Run the admission sequence for one request.

        Whitelisted IPs bypass everything. Blocked IPs are rejected before any
        tracking happens. Otherwise the request is tracked, charged against the
        per-IP bucket (and the per-user bucket when a user is known) and, if
        admitted, the tenant's traffic is checked for a DDoS.
        """
        self.ensure_initialized()

        if self.blocking.is_whitelisted(tenant_id, ip):
            return RequestDecision(action=DECISION_WHITELISTED)

        status = self.blocking.is_blocked(tenant_id, ip)
        if status.blocked:
            return RequestDecision(action=DECISION_BLOCKED, block=status)

        self.tracker.track_request(ip, endpoint, method, user_agent)

        result = await self.rate_limiter.check_limit(
            tenant_id, ip, IDENTIFIER_TYPE_IP, endpoint=endpoint
        )
        if not result.allowed:
            return RequestDecision(action=DECISION_RATE_LIMITED, limit=result)

        if user_id:
            user_result = await self.rate_limiter.check_limit(
                tenant_id, user_id, IDENTIFIER_TYPE_USER
            )
            if not user_result.allowed:
                return RequestDecision(action=DECISION_RATE_LIMITED, limit=user_result)

        if self.settings.ddos_check_on_request:
            try:
                check = await self.ddos.check_for_ddos(tenant_id)
            except Exception:
                # Detection must not reject a request that was already admitted.
                logger.exception("DDoS check failed for tenant %s", tenant_id)
            else:
                if check.mitigated:
                    logger.warning(
                        "DDoS attack mitigated for tenant %s: %d IPs blocked",
                        tenant_id,
                        check.blocked_ips,
                    )

        return RequestDecision(action=DECISION_ALLOW, limit=result)

    async def check_for_ddos(self, tenant_id: str) -> DDoSCheckResult:
        self.ensure_initialized()
        return await self.ddos.check_for_ddos(tenant_id)

    async def cleanup_all(self) -> CleanupReport:
        """Run every component's housekeeping pass."""
        tracker_keys = self.tracker.cleanup()
        login_keys = self.brute_force.cleanup()
        blocks_removed, whitelist_removed = await self.blocking.cleanup()
        records = await self.rate_limiter.cleanup(None, self.settings.rate_limit_retention_hours)
        report = CleanupReport(
            tracker_keys=tracker_keys,
            login_attempt_keys=login_keys,
            blocks_removed=blocks_removed,
            whitelist_removed=whitelist_removed,
            rate_limit_records=records,
        )
        logger.info("Protection cleanup complete: %s", report)
        return report


class _ProtectionServiceSingleton:
    """Process-wide ProtectionService holder."""

    _instance: ProtectionService | None = None

    @classmethod
    def get_instance(cls) -> ProtectionService:
        if cls._instance is None:
            cls._instance = ProtectionService(SessionLocal)
        return cls._instance

    @classmethod
    def set_instance(cls, service: ProtectionService | None) -> None:
        cls._instance = service


def get_protection_service() -> ProtectionService:
    """Return the process-wide protection service."""
    return _ProtectionServiceSingleton.get_instance()


def set_protection_service(service: ProtectionService | None) -> None:
    """Replace the process-wide protection service (used by tests)."""
    _ProtectionServiceSingleton.set_instance(service)
