# tests/services/test_ip_tracker.py
"""Tests for the in-memory IP activity tracker."""

from __future__ import annotations

from scanner_shield.services.ip_tracker import MAX_ENTRIES_PER_KEY, IPTracker


def _burst(tracker: IPTracker, ip: str, count: int, endpoint: str = "/scan", agent: str | None = None) -> None:
    for _ in range(count):
        tracker.track_request(ip, endpoint, "GET", agent)


def test_request_rate_counts_only_recent_entries(tracker, clock):
    _burst(tracker, "10.0.0.1", 5)
    clock.advance(61)
    _burst(tracker, "10.0.0.1", 3)

    rate = tracker.get_request_rate("10.0.0.1", "/scan", window_seconds=60)

    assert rate.count == 3
    assert rate.rate == 3 / 60
    assert rate.window == 60


def test_request_rate_for_unknown_ip_is_zero(tracker):
    rate = tracker.get_request_rate("192.0.2.1", "/scan")
    assert rate.count == 0
    assert rate.rate == 0


def test_window_keeps_only_most_recent_entries(tracker):
    _burst(tracker, "10.0.0.1", MAX_ENTRIES_PER_KEY + 5)
    assert tracker.get_ip_stats("10.0.0.1").total_requests == MAX_ENTRIES_PER_KEY


def test_single_heuristic_is_not_suspicious(tracker):
    # 101 requests inside one second trips only the frequency check.
    _burst(tracker, "10.0.0.2", 101)

    report = tracker.is_suspicious("10.0.0.2")

    assert report.patterns["high_frequency"] is True
    assert report.reasons == ["high_frequency"]
    assert report.suspicious is False


def test_two_heuristics_are_suspicious(tracker):
    _burst(tracker, "10.0.0.3", 101, agent="python-requests/2.31")

    report = tracker.is_suspicious("10.0.0.3")

    assert report.suspicious is True
    assert set(report.reasons) == {"high_frequency", "single_user_agent"}


def test_uniform_timing_and_fan_out(tracker, clock):
    for i in range(21):
        tracker.track_request("10.0.0.4", f"/api/item/{i}", "GET")
        clock.advance(1)

    report = tracker.is_suspicious("10.0.0.4")

    assert report.patterns["uniform_timing"] is True
    assert report.patterns["multiple_endpoints"] is True
    assert report.patterns["high_frequency"] is False
    assert report.suspicious is True


def test_irregular_timing_is_not_uniform(tracker, clock):
    for gap in (1, 5, 1, 9, 2, 7, 1, 3, 8, 1, 6):
        tracker.track_request("10.0.0.5", "/scan", "GET")
        clock.advance(gap)

    assert tracker.is_suspicious("10.0.0.5", "/scan").patterns["uniform_timing"] is False


def test_top_ips_sorted_and_excludes_idle(tracker, clock):
    _burst(tracker, "10.0.0.1", 2)
    _burst(tracker, "10.0.0.2", 5)
    _burst(tracker, "10.0.0.3", 5, endpoint="/other")
    _burst(tracker, "10.0.0.9", 1)
    clock.advance(120)
    _burst(tracker, "10.0.0.1", 1)

    top = tracker.get_top_ips(limit=10, window_seconds=60)

    assert [entry.ip for entry in top] == ["10.0.0.1"]

    top = tracker.get_top_ips(limit=3, window_seconds=3600)
    assert [(entry.ip, entry.requests) for entry in top] == [
        ("10.0.0.2", 5),
        ("10.0.0.3", 5),
        ("10.0.0.1", 3),
    ]
    assert top[0].rate == 5 / 3600


def test_ip_stats_summary(tracker, clock):
    tracker.track_request("10.0.0.7", "/a", "GET", "agent-a")
    tracker.track_request("10.0.0.7", "/b", "POST", "agent-b")
    clock.advance(120)
    tracker.track_request("10.0.0.7", "/a", "GET", "agent-a")

    stats = tracker.get_ip_stats("10.0.0.7")

    assert stats.total_requests == 3
    assert stats.endpoints == ["/a", "/b"]
    assert stats.user_agents == ["agent-a", "agent-b"]
    assert stats.requests_per_minute == 1
    assert stats.suspicious is False


def test_cleanup_drops_expired_keys(tracker, clock):
    _burst(tracker, "10.0.0.1", 3, endpoint="/old")
    clock.advance(3000)
    _burst(tracker, "10.0.0.1", 1, endpoint="/new")
    _burst(tracker, "10.0.0.2", 1)
    clock.advance(700)

    removed = tracker.cleanup()

    assert removed == 1
    assert tracker.get_ip_stats("10.0.0.1").endpoints == ["/new"]
    assert sorted(tracker.get_all_ips()) == ["10.0.0.1", "10.0.0.2"]

    clock.advance(3600)
    assert tracker.cleanup() == 2
    assert tracker.get_all_ips() == []


def test_clear_ip(tracker):
    _burst(tracker, "10.0.0.1", 3)
    tracker.clear_ip("10.0.0.1")
    tracker.clear_ip("10.0.0.1")
    assert tracker.get_all_ips() == []
