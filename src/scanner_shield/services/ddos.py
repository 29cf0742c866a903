"""Aggregate traffic analysis and bulk mitigation of DDoS attacks."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from scanner_shield.core.settings import settings
from scanner_shield.db.time import Clock
from scanner_shield.models.blocking import BLOCK_TYPE_DDOS
from scanner_shield.models.rate_limit import IDENTIFIER_TYPE_GLOBAL
from scanner_shield.models.violation import LIMIT_TYPE_DDOS
from scanner_shield.services import events
from scanner_shield.services.blocking import BlockingManager
from scanner_shield.services.config import ConfigService, RateLimitPolicy
from scanner_shield.services.events import EventSink
from scanner_shield.services.ip_tracker import IPRate, IPTracker
from scanner_shield.services.violations import ViolationLog

logger = logging.getLogger(__name__)

TOP_IP_SAMPLE = 20

ATTACK_UNKNOWN = "unknown"
ATTACK_DISTRIBUTED = "distributed"
ATTACK_CONCENTRATED = "concentrated"
ATTACK_BOTNET = "botnet"

DISTRIBUTED_RATE_FACTOR = 0.8
DISTRIBUTED_MIN_SOURCES = 10
DISTRIBUTED_FULL_CONFIDENCE_SOURCES = 20
CONCENTRATED_RATE_FACTOR = 2.0
CONCENTRATED_MAX_SOURCES = 4
CONCENTRATED_FULL_CONFIDENCE_RATE = 100.0
BOTNET_MIN_SOURCES = 5
BOTNET_FULL_CONFIDENCE_SOURCES = 10


@dataclass(frozen=True)
class AttackAnalysis:
    type: str = ATTACK_UNKNOWN
    confidence: float = 0.0
    suspicious_ips: list[str] = field(default_factory=list)
    characteristics: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class DDoSCheckResult:
    under_attack: bool
    rate: float
    threshold: float
    confidence: float = 0.0
    attack_type: str | None = None
    mitigated: bool = False
    blocked_ips: int = 0


class DDoSProtector:
    """Classifies tenant-wide traffic spikes and blocks the offending sources."""

    def __init__(
        self,
        config_service: ConfigService,
        blocking: BlockingManager,
        tracker: IPTracker,
        violations: ViolationLog,
        clock: Clock = time.time,
        event_sink: EventSink | None = None,
        mitigation_confidence: float | None = None,
    ) -> None:
        self._config = config_service
        self._blocking = blocking
        self._tracker = tracker
        self._violations = violations
        self._clock = clock
        self._events = event_sink
        self.mitigation_confidence = (
            settings.ddos_mitigation_confidence
            if mitigation_confidence is None
            else mitigation_confidence
        )

    async def check_for_ddos(self, tenant_id: str) -> DDoSCheckResult:
        """Compare the busiest sources' combined rate against the tenant threshold.

        Attack analysis only runs once the threshold is exceeded, and the
        suspicious sources are only blocked when the analysis is confident.
        """
        policy = self._config.get_policy(tenant_id)
        top_ips = self._tracker.get_top_ips(TOP_IP_SAMPLE, policy.ddos_window)
        total_rate = sum(entry.rate for entry in top_ips)
        threshold = policy.ddos_threshold / policy.ddos_window

        if total_rate <= threshold:
            return DDoSCheckResult(under_attack=False, rate=total_rate, threshold=threshold)

        logger.warning(
            "Possible DDoS against tenant %s: %.2f req/s (threshold %.2f req/s)",
            tenant_id,
            total_rate,
            threshold,
        )
        analysis = self.analyze_attack(top_ips, policy)
        events.emit(
            self._events,
            events.DDOS_DETECTED,
            {
                "tenant_id": tenant_id,
                "rate": total_rate,
                "threshold": threshold,
                "attack_type": analysis.type,
                "confidence": analysis.confidence,
            },
        )

        mitigated = analysis.confidence > self.mitigation_confidence
        blocked = 0
        if mitigated:
            blocked = await self.mitigate_ddos(tenant_id, analysis, policy)

        return DDoSCheckResult(
            under_attack=True,
            rate=total_rate,
            threshold=threshold,
            confidence=analysis.confidence,
            attack_type=analysis.type,
            mitigated=mitigated,
            blocked_ips=blocked,
        )

    def analyze_attack(self, top_ips: list[IPRate], policy: RateLimitPolicy) -> AttackAnalysis:
        """Classify the traffic of the busiest IPs.

        Every classifier is evaluated; when several match, botnet wins over
        concentrated, which wins over distributed.
        """
        per_ip_rate = policy.per_ip_rate

        botnet = [e.ip for e in top_ips if self._tracker.is_suspicious(e.ip).suspicious]
        if len(botnet) > BOTNET_MIN_SOURCES:
            return AttackAnalysis(
                type=ATTACK_BOTNET,
                confidence=min(len(botnet) / BOTNET_FULL_CONFIDENCE_SOURCES, 1.0),
                suspicious_ips=botnet,
                characteristics={"bot_like_sources": len(botnet)},
            )

        heavy = [e for e in top_ips if e.rate > per_ip_rate * CONCENTRATED_RATE_FACTOR]
        if 0 < len(heavy) <= CONCENTRATED_MAX_SOURCES:
            return AttackAnalysis(
                type=ATTACK_CONCENTRATED,
                confidence=min(heavy[0].rate / CONCENTRATED_FULL_CONFIDENCE_RATE, 1.0),
                suspicious_ips=[e.ip for e in heavy],
                characteristics={"high_rate_sources": len(heavy)},
            )

        moderate = [e.ip for e in top_ips if e.rate > per_ip_rate * DISTRIBUTED_RATE_FACTOR]
        if len(moderate) > DISTRIBUTED_MIN_SOURCES:
            return AttackAnalysis(
                type=ATTACK_DISTRIBUTED,
                confidence=min(len(moderate) / DISTRIBUTED_FULL_CONFIDENCE_SOURCES, 1.0),
                suspicious_ips=moderate,
                characteristics={"distributed_sources": len(moderate)},
            )

        return AttackAnalysis()

    async def mitigate_ddos(
        self, tenant_id: str, analysis: AttackAnalysis, policy: RateLimitPolicy
    ) -> int:
        """Block every suspicious IP concurrently; returns how many blocks succeeded."""
        logger.info(
            "Mitigating %s DDoS attack against tenant %s (%d sources)",
            analysis.type,
            tenant_id,
            len(analysis.suspicious_ips),
        )
        reason = (
            f"Auto-blocked during {analysis.type} DDoS attack "
            f"(confidence: {analysis.confidence * 100:.1f}%)"
        )
        results = await asyncio.gather(
            *(
                self._blocking.block_ip(
                    tenant_id, ip, BLOCK_TYPE_DDOS, reason, policy.block_duration
                )
                for ip in analysis.suspicious_ips
            ),
            return_exceptions=True,
        )

        blocked_ips: list[str] = []
        for ip, result in zip(analysis.suspicious_ips, results):
            if isinstance(result, BaseException):
                logger.error("Error blocking %s during DDoS mitigation: %s", ip, result)
                continue
            if not result.success:
                logger.warning(
                    "Could not block %s during DDoS mitigation: %s",
                    ip,
                    result.reason or result.error,
                )
                continue
            blocked_ips.append(ip)
            self._violations.record(
                tenant_id,
                identifier="system",
                identifier_type=IDENTIFIER_TYPE_GLOBAL,
                ip_address=ip,
                endpoint="*",
                method="*",
                limit_type=LIMIT_TYPE_DDOS,
                current_rate=0,
                limit_rate=0,
                action_taken=f"auto_blocked_{analysis.type}",
            )

        logger.info("Blocked %d IPs for tenant %s", len(blocked_ips), tenant_id)
        events.emit(
            self._events,
            events.DDOS_MITIGATED,
            {
                "tenant_id": tenant_id,
                "attack_type": analysis.type,
                "confidence": analysis.confidence,
                "blocked_ips": blocked_ips,
            },
        )
        return len(blocked_ips)

    async def get_stats(self, tenant_id: str, hours: int = 24) -> list[dict[str, Any]]:
        return self._violations.ddos_stats(tenant_id, hours)
