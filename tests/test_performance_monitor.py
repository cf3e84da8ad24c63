"""Tests for workflow execution metrics."""

import pytest

from simplified_mcp_server.performance_monitor import (
    ExecutionMetric,
    WorkflowPerformanceMonitor,
)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monitor(clock):
    return WorkflowPerformanceMonitor(clock=clock)


def run(monitor, clock, workflow_id, seconds, status="COMPLETED", error=None):
    metric = monitor.start_execution(workflow_id)
    clock.now += seconds
    return monitor.complete_execution(metric, status, error)


def test_complete_execution_records_duration(monitor, clock):
    metric = monitor.start_execution("561")
    monitor.record_started(metric, "inst-1", "corr-1")
    clock.now += 2.5

    monitor.complete_execution(metric, "COMPLETED")

    assert isinstance(metric, ExecutionMetric)
    assert metric.finished
    assert metric.duration == pytest.approx(2500)
    assert metric.workflow_instance_id == "inst-1"
    assert metric.correlation_id == "corr-1"


def test_empty_stats(monitor):
    stats = monitor.get_performance_stats()

    assert stats["total_executions"] == 0
    assert stats["success_rate"] == 0
    assert stats["error_rate"] == 0
    assert stats["p95_duration"] == 0
    assert stats["window_start"] == 0


def test_stats_by_status(monitor, clock):
    run(monitor, clock, "1", 1)
    run(monitor, clock, "1", 3)
    run(monitor, clock, "2", 2, "FAILED", "quota exceeded")
    run(monitor, clock, "2", 10, "TIMEOUT", "Workflow execution timed out")
    monitor.start_execution("3")

    stats = monitor.get_performance_stats()

    assert stats["total_executions"] == 5
    assert stats["running_executions"] == 1
    assert stats["completed_executions"] == 2
    assert stats["failed_executions"] == 1
    assert stats["timeout_executions"] == 1
    assert stats["success_rate"] == pytest.approx(0.5)
    assert stats["error_rate"] == pytest.approx(0.5)
    assert stats["min_duration"] == pytest.approx(1000)
    assert stats["max_duration"] == pytest.approx(10000)
    assert stats["average_duration"] == pytest.approx(4000)


def test_percentiles_use_nearest_rank(monitor, clock):
    for seconds in range(1, 21):
        run(monitor, clock, "1", seconds)

    stats = monitor.get_performance_stats()

    assert stats["p50_duration"] == pytest.approx(10000)
    assert stats["p95_duration"] == pytest.approx(19000)


def test_window_only_counts_recent_starts(monitor, clock):
    run(monitor, clock, "old", 1)
    clock.now += 600
    run(monitor, clock, "new", 1)

    stats = monitor.get_performance_stats(window_ms=60_000)

    assert stats["total_executions"] == 1
    assert stats["window_end"] - stats["window_start"] == pytest.approx(60_000)


def test_cleanup_drops_old_finished_metrics(clock):
    monitor = WorkflowPerformanceMonitor(retention_ms=60_000, clock=clock)
    run(monitor, clock, "done", 1)
    still_running = monitor.start_execution("slow")
    clock.now += 120

    assert monitor.cleanup_old_metrics() == 1
    assert monitor.get_all_metrics() == [still_running]


def test_start_execution_runs_cleanup(clock):
    monitor = WorkflowPerformanceMonitor(retention_ms=60_000, clock=clock)
    run(monitor, clock, "done", 1)
    clock.now += 120

    monitor.start_execution("next")

    assert [m.workflow_id for m in monitor.get_all_metrics()] == ["next"]


def test_history_is_bounded(clock):
    monitor = WorkflowPerformanceMonitor(max_metrics=3, clock=clock)
    for index in range(5):
        run(monitor, clock, str(index), 1)

    assert [m.workflow_id for m in monitor.get_all_metrics()] == ["2", "3", "4"]
