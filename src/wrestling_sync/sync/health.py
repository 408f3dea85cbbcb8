"""Rolling health metrics for sync operations."""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Deque, Dict, Any, List, Optional

from .models import HealthStatus, HealthSummary, SyncMetric, SyncResult
from .progress import ProgressTracker


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthPolicy:
    """Thresholds used to derive health status and recommendations."""
    unhealthy_consecutive_failures: int = 3
    degraded_success_rate: float = 90.0
    degraded_average_sync_ms: float = 30000.0
    stale_sync_hours: int = 24
    recent_sync_hours: int = 6
    max_active_operations: int = 5


class HealthMonitor:
    """Records sync attempts and derives health from a bounded window.

    Success rate and average duration are computed over the retained
    window; the running counters and the failure streak cover every
    attempt since the last reset, so eviction never resets the streak.
    """

    def __init__(self, window_size: int = 50, policy: Optional[HealthPolicy] = None,
                 progress_tracker: Optional[ProgressTracker] = None):
        if window_size <= 0:
            raise ValueError(f"window_size must be positive, got {window_size}")
        self.window_size = window_size
        self.policy = policy or HealthPolicy()
        self._progress_tracker = progress_tracker
        self._lock = threading.Lock()
        self._reset_state()

    def _reset_state(self) -> None:
        self._metrics: Deque[SyncMetric] = deque(maxlen=self.window_size)
        self._successful_syncs = 0
        self._failed_syncs = 0
        self._consecutive_failures = 0
        self._last_successful_sync: Optional[datetime] = None
        self._last_failed_sync: Optional[datetime] = None
        self._last_error_message: Optional[str] = None

    def record_attempt(self, metric: SyncMetric) -> None:
        """Record one completed entity sync attempt."""
        with self._lock:
            self._metrics.append(metric)
            if metric.success:
                self._successful_syncs += 1
                self._consecutive_failures = 0
                self._last_successful_sync = metric.timestamp
            else:
                self._failed_syncs += 1
                self._consecutive_failures += 1
                self._last_failed_sync = metric.timestamp
                self._last_error_message = metric.error_message
            streak = self._consecutive_failures

        if metric.success:
            logger.debug(f"Recorded successful sync of {metric.entity_type} "
                         f"({metric.item_count} items, {metric.duration_ms:.0f}ms)")
        elif streak >= self.policy.unhealthy_consecutive_failures:
            logger.error(f"Sync health is unhealthy: {streak} consecutive failures, "
                         f"last error: {metric.error_message}",
                         extra={'entity_type': metric.entity_type})
        else:
            logger.warning(f"Recorded failed sync of {metric.entity_type}: {metric.error_message}",
                           extra={'entity_type': metric.entity_type})

    def record_result(self, result: SyncResult) -> None:
        self.record_attempt(SyncMetric.from_result(result))

    def summary(self) -> HealthSummary:
        active = (len(self._progress_tracker.active_operations())
                  if self._progress_tracker else 0)

        with self._lock:
            window = list(self._metrics)
            successful_syncs = self._successful_syncs
            failed_syncs = self._failed_syncs
            streak = self._consecutive_failures
            last_success = self._last_successful_sync
            last_failure = self._last_failed_sync
            last_error = self._last_error_message

        if window:
            success_rate = 100.0 * sum(1 for m in window if m.success) / len(window)
        else:
            success_rate = 100.0
        durations = [m.duration_ms for m in window if m.success]
        average = sum(durations) / len(durations) if durations else 0.0

        status = self._derive_status(success_rate, average, streak,
                                     failed_syncs, last_success)
        return HealthSummary(
            successful_syncs=successful_syncs,
            failed_syncs=failed_syncs,
            success_rate=success_rate,
            average_sync_time_ms=average,
            consecutive_failures=streak,
            active_operations=active,
            status=status,
            last_successful_sync=last_success,
            last_failed_sync=last_failure,
            last_error_message=last_error,
        )

    def status(self) -> HealthStatus:
        return self.summary().status

    def _derive_status(self, success_rate: float, average_ms: float, streak: int,
                       failed_syncs: int, last_success: Optional[datetime]) -> HealthStatus:
        policy = self.policy
        # The failure streak outranks the window figures
        if streak >= policy.unhealthy_consecutive_failures:
            return HealthStatus.UNHEALTHY
        if failed_syncs > 0 and last_success is None:
            return HealthStatus.UNHEALTHY
        if success_rate < policy.degraded_success_rate:
            return HealthStatus.DEGRADED
        if average_ms > policy.degraded_average_sync_ms:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    def recent_metrics(self, limit: Optional[int] = None) -> List[SyncMetric]:
        """Most recent metrics first."""
        with self._lock:
            metrics = list(reversed(self._metrics))
        if limit is not None:
            metrics = metrics[:max(0, limit)]
        return metrics

    def reset_metrics(self) -> None:
        with self._lock:
            self._reset_state()
        logger.info("Sync health metrics reset")

    def stats(self) -> Dict[str, Any]:
        """Derived statistics: totals, failure rate and recent success rate."""
        summary = self.summary()
        recent = self.recent_metrics(10)
        total = summary.successful_syncs + summary.failed_syncs

        return {
            "total_operations": total,
            "successful_syncs": summary.successful_syncs,
            "failed_syncs": summary.failed_syncs,
            "success_rate": round(summary.success_rate, 2),
            "failure_rate": round(100.0 * summary.failed_syncs / total, 2) if total else 0.0,
            "average_sync_time_ms": round(summary.average_sync_time_ms, 2),
            "recent_success_rate": (
                round(100.0 * sum(1 for m in recent if m.success) / len(recent), 2)
                if recent else 100.0
            ),
            "recent_operations": len(recent),
            "consecutive_failures": summary.consecutive_failures,
            "window_size": self.window_size,
        }

    def recommendations(self, now: Optional[datetime] = None) -> List[str]:
        return generate_recommendations(self.summary(), self.policy, now)


def generate_recommendations(summary: HealthSummary, policy: Optional[HealthPolicy] = None,
                             now: Optional[datetime] = None) -> List[str]:
    """Turn a health summary into operator advice."""
    policy = policy or HealthPolicy()
    now = now or datetime.now()
    recommendations = []

    if summary.success_rate < policy.degraded_success_rate:
        recommendations.append(
            f"Success rate is below {policy.degraded_success_rate:.0f}%. "
            "Check error logs and network connectivity."
        )

    if summary.consecutive_failures >= policy.unhealthy_consecutive_failures:
        recommendations.append(
            "Multiple consecutive failures detected. Check NOTION_TOKEN and API connectivity."
        )

    if summary.average_sync_time_ms > policy.degraded_average_sync_ms:
        recommendations.append(
            "Average sync time is high. Consider optimizing sync operations "
            "or checking API performance."
        )

    last_success = summary.last_successful_sync
    if last_success is not None:
        age = now - last_success
        if age > timedelta(hours=policy.stale_sync_hours):
            recommendations.append(
                f"No successful sync in over {policy.stale_sync_hours} hours. "
                "Check sync scheduler and configuration."
            )
        elif age > timedelta(hours=policy.recent_sync_hours):
            recommendations.append(
                "No recent successful sync. Monitor sync operations closely."
            )

    if summary.active_operations > policy.max_active_operations:
        recommendations.append(
            "Many active sync operations. Consider reducing sync frequency "
            "or checking for stuck operations."
        )

    if not recommendations:
        recommendations.append("Sync health is good. Continue monitoring for any changes.")

    return recommendations
