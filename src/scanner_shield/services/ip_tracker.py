"""In-memory request telemetry per IP and endpoint.

The tracker is approximate by design: windows live only in process memory,
are capped per key and are lost on restart. Downstream detectors use it for
rates and bot-like behaviour heuristics, never for exact accounting.
"""

from __future__ import annotations

import logging
import statistics
import time
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import NamedTuple

from scanner_shield.db.time import Clock

logger = logging.getLogger(__name__)

MAX_ENTRIES_PER_KEY = 1000
RETENTION_SECONDS = 3600

HIGH_FREQUENCY_WINDOW_SECONDS = 10
HIGH_FREQUENCY_RATE = 10.0
UNIFORM_TIMING_MIN_SAMPLES = 10
UNIFORM_TIMING_SAMPLE_SIZE = 50
UNIFORM_TIMING_MAX_CV = 0.1
FAN_OUT_WINDOW_SECONDS = 60
FAN_OUT_MAX_ENDPOINTS = 20
SINGLE_AGENT_MIN_REQUESTS = 100
SUSPICIOUS_MIN_SIGNALS = 2


class RequestEntry(NamedTuple):
    timestamp: float
    method: str
    user_agent: str | None


@dataclass(frozen=True)
class RequestRate:
    """Request count and per-second rate over a trailing window."""

    count: int
    rate: float
    window: int


@dataclass(frozen=True)
class IPRate:
    ip: str
    requests: int
    rate: float


@dataclass(frozen=True)
class SuspicionReport:
    """Outcome of the bot-behaviour heuristics for one IP."""

    suspicious: bool
    reasons: list[str]
    patterns: dict[str, bool] = field(default_factory=dict)


@dataclass(frozen=True)
class IPStats:
    total_requests: int
    endpoints: list[str]
    user_agents: list[str]
    requests_per_minute: int
    suspicious: bool
    suspicious_reasons: list[str]


class IPTracker:
    """Sliding request windows keyed by IP, then endpoint."""

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._windows: dict[str, dict[str, deque[RequestEntry]]] = {}

    def track_request(
        self,
        ip: str,
        endpoint: str,
        method: str,
        user_agent: str | None = None,
    ) -> None:
        """Record a request; only the most recent entries per key are kept."""
        per_ip = self._windows.setdefault(ip, {})
        window = per_ip.get(endpoint)
        if window is None:
            window = per_ip[endpoint] = deque(maxlen=MAX_ENTRIES_PER_KEY)
        window.append(RequestEntry(self._clock(), method, user_agent or None))

    def get_request_rate(self, ip: str, endpoint: str, window_seconds: int = 60) -> RequestRate:
        """Return the request count and rate for one IP/endpoint pair."""
        entries = self._windows.get(ip, {}).get(endpoint, ())
        count = self._count_since(entries, self._clock() - window_seconds)
        return RequestRate(count=count, rate=count / window_seconds, window=window_seconds)

    def is_suspicious(self, ip: str, endpoint: str | None = None) -> SuspicionReport:
        """Evaluate four independent heuristics; two or more firing is suspicious.

        With no endpoint, frequency and timing are evaluated across all of the
        IP's endpoints.
        """
        patterns = {
            "high_frequency": self._check_high_frequency(ip, endpoint),
            "uniform_timing": self._check_uniform_timing(ip, endpoint),
            "multiple_endpoints": self._check_multiple_endpoints(ip),
            "single_user_agent": self._check_single_user_agent(ip),
        }
        reasons = [name for name, fired in patterns.items() if fired]
        return SuspicionReport(
            suspicious=len(reasons) >= SUSPICIOUS_MIN_SIGNALS,
            reasons=reasons,
            patterns=patterns,
        )

    def get_top_ips(self, limit: int = 10, window_seconds: int = 3600) -> list[IPRate]:
        """Return the busiest IPs across all endpoints within the window."""
        since = self._clock() - window_seconds
        counts: list[tuple[str, int]] = []
        for ip, per_ip in self._windows.items():
            total = sum(self._count_since(entries, since) for entries in per_ip.values())
            if total:
                counts.append((ip, total))
        counts.sort(key=lambda item: (-item[1], item[0]))
        return [
            IPRate(ip=ip, requests=total, rate=total / window_seconds)
            for ip, total in counts[:limit]
        ]

    def get_ip_stats(self, ip: str) -> IPStats:
        """Summarise everything currently tracked for one IP."""
        since = self._clock() - 60
        per_ip = self._windows.get(ip, {})
        total = 0
        last_minute = 0
        agents: set[str] = set()
        for entries in per_ip.values():
            for entry in entries:
                total += 1
                if entry.user_agent:
                    agents.add(entry.user_agent)
                if entry.timestamp > since:
                    last_minute += 1
        report = self.is_suspicious(ip)
        return IPStats(
            total_requests=total,
            endpoints=sorted(per_ip),
            user_agents=sorted(agents),
            requests_per_minute=last_minute,
            suspicious=report.suspicious,
            suspicious_reasons=report.reasons,
        )

    def get_all_ips(self) -> list[str]:
        return list(self._windows)

    def clear_ip(self, ip: str) -> None:
        """Forget all tracking data for an IP."""
        if self._windows.pop(ip, None) is not None:
            logger.info("Cleared tracking data for IP %s", ip)

    def cleanup(self) -> int:
        """Drop entries older than the retention window and remove empty keys.

        Returns the number of (ip, endpoint) keys removed.
        """
        cutoff = self._clock() - RETENTION_SECONDS
        removed = 0
        for ip in list(self._windows):
            per_ip = self._windows[ip]
            for endpoint in list(per_ip):
                entries = per_ip[endpoint]
                while entries and entries[0].timestamp <= cutoff:
                    entries.popleft()
                if not entries:
                    del per_ip[endpoint]
                    removed += 1
            if not per_ip:
                del self._windows[ip]
        if removed:
            logger.info("Cleaned up %d idle request windows", removed)
        return removed

    # --- Heuristics -----------------------------------------------------------------
    def _entries_for(self, ip: str, endpoint: str | None) -> list[RequestEntry]:
        per_ip = self._windows.get(ip, {})
        if endpoint is not None:
            return list(per_ip.get(endpoint, ()))
        merged = [entry for entries in per_ip.values() for entry in entries]
        merged.sort(key=lambda entry: entry.timestamp)
        return merged

    def _check_high_frequency(self, ip: str, endpoint: str | None) -> bool:
        since = self._clock() - HIGH_FREQUENCY_WINDOW_SECONDS
        count = self._count_since(self._entries_for(ip, endpoint), since)
        return count / HIGH_FREQUENCY_WINDOW_SECONDS > HIGH_FREQUENCY_RATE

    def _check_uniform_timing(self, ip: str, endpoint: str | None) -> bool:
        entries = self._entries_for(ip, endpoint)
        if len(entries) < UNIFORM_TIMING_MIN_SAMPLES:
            return False
        sample = entries[-UNIFORM_TIMING_SAMPLE_SIZE:]
        intervals = [b.timestamp - a.timestamp for a, b in zip(sample, sample[1:])]
        mean = statistics.fmean(intervals)
        # Regular spacing (low spread relative to the mean) looks scripted.
        return statistics.pstdev(intervals) < mean * UNIFORM_TIMING_MAX_CV

    def _check_multiple_endpoints(self, ip: str) -> bool:
        since = self._clock() - FAN_OUT_WINDOW_SECONDS
        active = sum(
            1
            for entries in self._windows.get(ip, {}).values()
            if entries and entries[-1].timestamp > since
        )
        return active > FAN_OUT_MAX_ENDPOINTS

    def _check_single_user_agent(self, ip: str) -> bool:
        agents: set[str] = set()
        total = 0
        for entries in self._windows.get(ip, {}).values():
            for entry in entries:
                if entry.user_agent:
                    agents.add(entry.user_agent)
                    total += 1
        return total > SINGLE_AGENT_MIN_REQUESTS and len(agents) == 1

    @staticmethod
    def _count_since(entries: Iterable[RequestEntry], since: float) -> int:
        return sum(1 for entry in entries if entry.timestamp > since)
