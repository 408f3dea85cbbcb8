"""Tests for sync health monitoring."""

from datetime import datetime, timedelta

import pytest
from hypothesis import given, strategies as st

from wrestling_sync.sync.health import HealthMonitor, HealthPolicy, generate_recommendations
from wrestling_sync.sync.models import HealthStatus, HealthSummary, SyncMetric, SyncResult
from wrestling_sync.sync.progress import ProgressTracker


def metric(success, duration_ms=100.0, entity_type="shows", timestamp=None, error=None):
    return SyncMetric(
        entity_type=entity_type,
        success=success,
        duration_ms=duration_ms,
        item_count=1 if success else 0,
        error_message=None if success else (error or "boom"),
        timestamp=timestamp or datetime.now(),
    )


def summary(**overrides):
    values = dict(
        successful_syncs=10,
        failed_syncs=0,
        success_rate=100.0,
        average_sync_time_ms=500.0,
        consecutive_failures=0,
        active_operations=0,
        status=HealthStatus.HEALTHY,
        last_successful_sync=datetime(2024, 6, 1, 12, 0),
    )
    values.update(overrides)
    return HealthSummary(**values)


def test_empty_monitor_is_healthy():
    monitor = HealthMonitor()
    result = monitor.summary()

    assert result.status == HealthStatus.HEALTHY
    assert result.success_rate == 100.0
    assert result.average_sync_time_ms == 0.0
    assert monitor.recent_metrics() == []


def test_streak_outranks_a_good_success_rate():
    monitor = HealthMonitor(window_size=50)
    for _ in range(30):
        monitor.record_attempt(metric(True))
    for _ in range(3):
        monitor.record_attempt(metric(False))

    result = monitor.summary()
    assert result.success_rate > 90.0
    assert result.consecutive_failures == 3
    assert result.status == HealthStatus.UNHEALTHY


def test_success_resets_the_streak():
    monitor = HealthMonitor()
    for _ in range(2):
        monitor.record_attempt(metric(False))
    monitor.record_attempt(metric(True))

    assert monitor.summary().consecutive_failures == 0


def test_failures_without_any_success_are_unhealthy():
    monitor = HealthMonitor()
    monitor.record_attempt(metric(False))

    assert monitor.status() == HealthStatus.UNHEALTHY


def test_low_success_rate_is_degraded():
    monitor = HealthMonitor(window_size=10)
    for success in [True, True, False, True, True, False, True, True]:
        monitor.record_attempt(metric(success))

    result = monitor.summary()
    assert result.success_rate == 75.0
    assert result.status == HealthStatus.DEGRADED


def test_slow_syncs_are_degraded():
    monitor = HealthMonitor()
    monitor.record_attempt(metric(True, duration_ms=45000))
    monitor.record_attempt(metric(True, duration_ms=35000))

    result = monitor.summary()
    assert result.average_sync_time_ms == 40000
    assert result.status == HealthStatus.DEGRADED


def test_average_ignores_failed_attempts():
    monitor = HealthMonitor()
    monitor.record_attempt(metric(True, duration_ms=100))
    monitor.record_attempt(metric(True, duration_ms=300))
    monitor.record_attempt(metric(False, duration_ms=99999))

    assert monitor.summary().average_sync_time_ms == 200


def test_window_is_bounded_but_counters_are_not():
    monitor = HealthMonitor(window_size=5)
    for _ in range(8):
        monitor.record_attempt(metric(True))

    result = monitor.summary()
    assert len(monitor.recent_metrics()) == 5
    assert result.successful_syncs == 8


@given(st.lists(st.booleans(), min_size=1, max_size=60), st.integers(min_value=1, max_value=10))
def test_streak_equals_trailing_failures(outcomes, window_size):
    monitor = HealthMonitor(window_size=window_size)
    for success in outcomes:
        monitor.record_attempt(metric(success))

    trailing = 0
    for success in reversed(outcomes):
        if success:
            break
        trailing += 1

    result = monitor.summary()
    assert result.consecutive_failures == trailing
    assert result.successful_syncs + result.failed_syncs == len(outcomes)
    if trailing >= 3:
        assert result.status == HealthStatus.UNHEALTHY


def test_recent_metrics_newest_first():
    monitor = HealthMonitor()
    for name in ["seasons", "shows", "segments"]:
        monitor.record_attempt(metric(True, entity_type=name))

    assert [m.entity_type for m in monitor.recent_metrics()] == ["segments", "shows", "seasons"]
    assert [m.entity_type for m in monitor.recent_metrics(limit=1)] == ["segments"]


def test_record_result_uses_result_figures():
    monitor = HealthMonitor()
    started = datetime.now() - timedelta(seconds=2)
    monitor.record_result(SyncResult.completed("wrestlers", started, created_count=3))

    recorded = monitor.recent_metrics()[0]
    assert recorded.entity_type == "wrestlers"
    assert recorded.item_count == 3
    assert recorded.duration_ms >= 2000


def test_reset_clears_everything():
    monitor = HealthMonitor()
    for _ in range(4):
        monitor.record_attempt(metric(False))
    monitor.reset_metrics()

    result = monitor.summary()
    assert result.failed_syncs == 0
    assert result.consecutive_failures == 0
    assert result.last_error_message is None
    assert result.status == HealthStatus.HEALTHY


def test_stats():
    monitor = HealthMonitor()
    for success in [True, True, True, False]:
        monitor.record_attempt(metric(success))

    stats = monitor.stats()
    assert stats["total_operations"] == 4
    assert stats["failure_rate"] == 25.0
    assert stats["success_rate"] == 75.0
    assert stats["recent_success_rate"] == 75.0
    assert stats["recent_operations"] == 4
    assert stats["consecutive_failures"] == 1


def test_active_operations_come_from_progress_tracker():
    tracker = ProgressTracker()
    tracker.start("op-1", 1)
    tracker.start("op-2", 1)
    tracker.complete("op-2", True)

    assert HealthMonitor(progress_tracker=tracker).summary().active_operations == 1


def test_invalid_window_size():
    with pytest.raises(ValueError):
        HealthMonitor(window_size=0)


def test_good_health_recommendation():
    now = datetime(2024, 6, 1, 13, 0)
    assert generate_recommendations(summary(), now=now) == [
        "Sync health is good. Continue monitoring for any changes."
    ]


def test_recommendations_for_problems():
    now = datetime(2024, 6, 3, 12, 0)
    advice = generate_recommendations(summary(
        success_rate=50.0,
        consecutive_failures=4,
        average_sync_time_ms=60000.0,
        active_operations=6,
    ), now=now)

    assert len(advice) == 5
    assert advice[0].startswith("Success rate is below 90%")
    assert "NOTION_TOKEN" in advice[1]
    assert "Average sync time is high" in advice[2]
    assert "No successful sync in over 24 hours" in advice[3]
    assert "Many active sync operations" in advice[4]


def test_recent_sync_warning():
    now = datetime(2024, 6, 1, 20, 0)
    advice = generate_recommendations(summary(), now=now)
    assert advice == ["No recent successful sync. Monitor sync operations closely."]


def test_custom_policy():
    policy = HealthPolicy(unhealthy_consecutive_failures=1)
    monitor = HealthMonitor(policy=policy)
    monitor.record_attempt(metric(True))
    monitor.record_attempt(metric(False))

    assert monitor.status() == HealthStatus.UNHEALTHY
