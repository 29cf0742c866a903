"""Failed-authentication tracking with automatic blocking."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import NamedTuple

from scanner_shield.db.time import Clock
from scanner_shield.models.blocking import BLOCK_TYPE_BRUTE_FORCE
from scanner_shield.models.rate_limit import IDENTIFIER_TYPE_USER
from scanner_shield.models.violation import LIMIT_TYPE_BRUTE_FORCE
from scanner_shield.services import events
from scanner_shield.services.blocking import BlockingManager
from scanner_shield.services.config import ConfigService
from scanner_shield.services.events import EventSink
from scanner_shield.services.violations import ViolationLog

logger = logging.getLogger(__name__)

ATTACK_WINDOW_SECONDS = 60
ATTACK_MIN_FAILURES = 3
RETENTION_SECONDS = 3600

AttemptKey = tuple[str, str, str]


class LoginAttempt(NamedTuple):
    timestamp: float
    success: bool
    endpoint: str


@dataclass(frozen=True)
class AttemptResult:
    blocked: bool
    attempts: int
    threshold: int


@dataclass(frozen=True)
class AttackStatus:
    under_attack: bool
    failed_attempts: int
    total_attempts: int


@dataclass(frozen=True)
class AttemptStats:
    total_attempts: int = 0
    failed_attempts: int = 0
    successful_attempts: int = 0
    unique_ips: int = 0
    unique_identifiers: int = 0


class BruteForceDetector:
    """Counts failed logins per (tenant, identifier, ip) over a sliding window.

    When the failures inside the tenant's brute-force window reach the
    configured threshold a violation is recorded and, if auto-blocking is
    enabled, the source IP is blocked for the tenant's block duration.
    """

    def __init__(
        self,
        config_service: ConfigService,
        blocking: BlockingManager,
        violations: ViolationLog,
        clock: Clock = time.time,
        event_sink: EventSink | None = None,
    ) -> None:
        self._config = config_service
        self._blocking = blocking
        self._violations = violations
        self._clock = clock
        self._events = event_sink
        self._attempts: dict[AttemptKey, list[LoginAttempt]] = {}

    async def track_attempt(
        self,
        tenant_id: str,
        identifier: str,
        ip: str,
        success: bool,
        endpoint: str = "/login",
    ) -> AttemptResult:
        """Record one authentication attempt and act if the threshold is reached."""
        policy = self._config.get_policy(tenant_id)
        now = self._clock()
        key = (tenant_id, identifier, ip)

        window_start = now - policy.brute_force_window
        attempts = [a for a in self._attempts.get(key, []) if a.timestamp > window_start]
        attempts.append(LoginAttempt(now, success, endpoint))
        self._attempts[key] = attempts

        failed = sum(1 for a in attempts if not a.success)
        threshold = policy.brute_force_attempts
        if failed < threshold:
            return AttemptResult(blocked=False, attempts=failed, threshold=threshold)

        logger.warning(
            "Brute force detected against %s from %s (tenant %s): %d failures",
            identifier,
            ip,
            tenant_id,
            failed,
        )
        blocked = False
        if policy.auto_block_enabled:
            result = await self._blocking.block_ip(
                tenant_id,
                ip,
                BLOCK_TYPE_BRUTE_FORCE,
                f"{failed} failed login attempts",
                policy.block_duration,
            )
            blocked = result.success
            if blocked:
                logger.info("Auto-blocked IP %s after brute force attempts", ip)

        self._violations.record(
            tenant_id,
            identifier=identifier,
            identifier_type=IDENTIFIER_TYPE_USER,
            ip_address=ip,
            endpoint=endpoint,
            method="POST",
            limit_type=LIMIT_TYPE_BRUTE_FORCE,
            current_rate=failed,
            limit_rate=threshold,
            action_taken="auto_blocked" if blocked else "detected",
        )
        events.emit(
            self._events,
            events.BRUTE_FORCE_DETECTED,
            {
                "tenant_id": tenant_id,
                "identifier": identifier,
                "ip": ip,
                "attempts": failed,
                "blocked": blocked,
            },
        )
        return AttemptResult(blocked=blocked, attempts=failed, threshold=threshold)

    def is_under_attack(self, tenant_id: str, identifier: str, ip: str) -> AttackStatus:
        """Short-window check: three or more failures in the last minute."""
        since = self._clock() - ATTACK_WINDOW_SECONDS
        recent = [a for a in self._attempts.get((tenant_id, identifier, ip), []) if a.timestamp > since]
        failed = sum(1 for a in recent if not a.success)
        return AttackStatus(
            under_attack=failed >= ATTACK_MIN_FAILURES,
            failed_attempts=failed,
            total_attempts=len(recent),
        )

    def get_attempt_stats(
        self,
        tenant_id: str,
        identifier: str | None = None,
        ip: str | None = None,
    ) -> AttemptStats:
        total = failed = 0
        ips: set[str] = set()
        identifiers: set[str] = set()
        for key, attempts in self._attempts.items():
            if not self._matches(key, tenant_id, identifier, ip):
                continue
            identifiers.add(key[1])
            ips.add(key[2])
            total += len(attempts)
            failed += sum(1 for a in attempts if not a.success)
        return AttemptStats(
            total_attempts=total,
            failed_attempts=failed,
            successful_attempts=total - failed,
            unique_ips=len(ips),
            unique_identifiers=len(identifiers),
        )

    def clear_attempts(
        self,
        tenant_id: str,
        identifier: str | None = None,
        ip: str | None = None,
    ) -> int:
        """Forget attempt history matching the filters; returns keys cleared."""
        keys = [k for k in self._attempts if self._matches(k, tenant_id, identifier, ip)]
        for key in keys:
            del self._attempts[key]
        logger.info("Cleared %d login attempt records for tenant %s", len(keys), tenant_id)
        return len(keys)

    def cleanup(self) -> int:
        """Drop attempts older than an hour; returns the number of keys removed."""
        cutoff = self._clock() - RETENTION_SECONDS
        removed = 0
        for key in list(self._attempts):
            kept = [a for a in self._attempts[key] if a.timestamp > cutoff]
            if kept:
                self._attempts[key] = kept
            else:
                del self._attempts[key]
                removed += 1
        if removed:
            logger.info("Cleaned up %d stale login attempt records", removed)
        return removed

    @staticmethod
    def _matches(
        key: AttemptKey, tenant_id: str, identifier: str | None, ip: str | None
    ) -> bool:
        key_tenant, key_identifier, key_ip = key
        if key_tenant != tenant_id:
            return False
        if identifier is not None and key_identifier != identifier:
            return False
        return ip is None or key_ip == ip
