"""Per-execution timing and windowed statistics for workflow runs."""

import logging
import math
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from pydantic import BaseModel

DEFAULT_RETENTION_MS = 24 * 60 * 60 * 1000
DEFAULT_MAX_METRICS = 1000

RUNNING = "RUNNING"
TIMEOUT = "TIMEOUT"


class ExecutionMetric(BaseModel):
    """Timing record for one ``execute_workflow`` call."""

    workflow_id: str
    workflow_instance_id: Optional[str] = None
    correlation_id: Optional[str] = None
    start_time: float
    end_time: Optional[float] = None
    duration: Optional[float] = None
    status: str = RUNNING
    error: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.status != RUNNING


def _percentile(sorted_values: List[float], percent: float) -> float:
    # Nearest-rank
    if not sorted_values:
        return 0
    rank = max(1, math.ceil(percent / 100.0 * len(sorted_values)))
    return sorted_values[rank - 1]


class WorkflowPerformanceMonitor:
    """Keeps a bounded history of execution metrics.

    Finished metrics older than ``retention_ms`` are dropped whenever a new
    execution starts; at most ``max_metrics`` records are held at any time.
    """

    def __init__(
        self,
        retention_ms: int = DEFAULT_RETENTION_MS,
        max_metrics: int = DEFAULT_MAX_METRICS,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.retention_ms = retention_ms
        self.logger = (logger or logging.getLogger(__name__)).getChild("PerformanceMonitor")
        self._clock = clock
        self._metrics: Deque[ExecutionMetric] = deque(maxlen=max_metrics)

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def start_execution(self, workflow_id: str) -> ExecutionMetric:
        self.cleanup_old_metrics()
        metric = ExecutionMetric(workflow_id=workflow_id, start_time=self._now_ms())
        self._metrics.append(metric)
        self.logger.debug(f"Tracking execution of workflow {workflow_id}")
        return metric

    def record_started(
        self, metric: ExecutionMetric, instance_id: str, correlation_id: str
    ) -> None:
        metric.workflow_instance_id = instance_id
        metric.correlation_id = correlation_id

    def complete_execution(
        self, metric: ExecutionMetric, status: str, error: Optional[str] = None
    ) -> ExecutionMetric:
        metric.end_time = self._now_ms()
        metric.duration = metric.end_time - metric.start_time
        metric.status = status
        metric.error = error
        self.logger.debug(
            f"Execution of workflow {metric.workflow_id} finished: {status} "
            f"in {metric.duration:.0f}ms"
        )
        return metric

    def cleanup_old_metrics(self) -> int:
        cutoff = self._now_ms() - self.retention_ms
        kept = [m for m in self._metrics if not (m.finished and m.start_time < cutoff)]
        removed = len(self._metrics) - len(kept)
        if removed:
            self._metrics = deque(kept, maxlen=self._metrics.maxlen)
            self.logger.info(f"Cleaned up {removed} old execution metrics")
        return removed

    def get_all_metrics(self) -> List[ExecutionMetric]:
        return list(self._metrics)

    def get_performance_stats(self, window_ms: Optional[int] = None) -> Dict[str, Any]:
        """Aggregate metrics started within the last ``window_ms`` (all when ``None``)."""
        now = self._now_ms()
        window_start = now - window_ms if window_ms else 0
        metrics = [m for m in self._metrics if m.start_time >= window_start]

        counts = {status: 0 for status in (RUNNING, "COMPLETED", "FAILED", "CANCELLED", TIMEOUT)}
        for metric in metrics:
            counts[metric.status] = counts.get(metric.status, 0) + 1

        durations = sorted(m.duration for m in metrics if m.duration is not None)
        finished = len(metrics) - counts[RUNNING]
        failed = sum(1 for m in metrics if m.finished and m.error)

        return {
            "total_executions": len(metrics),
            "running_executions": counts[RUNNING],
            "completed_executions": counts["COMPLETED"],
            "failed_executions": counts["FAILED"],
            "cancelled_executions": counts["CANCELLED"],
            "timeout_executions": counts[TIMEOUT],
            "success_rate": counts["COMPLETED"] / finished if finished else 0,
            "error_rate": failed / finished if finished else 0,
            "average_duration": sum(durations) / len(durations) if durations else 0,
            "min_duration": durations[0] if durations else 0,
            "max_duration": durations[-1] if durations else 0,
            "p50_duration": _percentile(durations, 50),
            "p95_duration": _percentile(durations, 95),
            "window_start": window_start,
            "window_end": now,
        }
