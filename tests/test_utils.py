import json

import pytest

from utils.utils import (
    PerformanceMetrics,
    PerformanceMonitor,
    atomic_write_json,
    create_performance_report,
)


def metric(operation, duration, failed=False):
    return PerformanceMetrics(
        operation=operation,
        duration_seconds=duration,
        cpu_percent=0.0,
        memory_mb=10.0,
        timestamp=0.0,
        additional_data={'exception': failed},
    )


class TestPerformanceMonitor:

    def test_samples_are_bounded(self):
        monitor = PerformanceMonitor(max_samples=50)
        for i in range(5000):
            monitor.record_metric(metric("verification", 0.001, failed=(i % 10 == 0)))

        assert len(monitor.metrics) == 50
        summary = monitor.get_summary()
        op = summary['operations']['verification']
        assert summary['total_operations'] == 5000
        assert op['count'] == 5000
        assert op['samples'] == 50
        assert op['failures'] == 500
        assert op['total_duration'] == pytest.approx(5.0)
        assert op['avg_duration'] == pytest.approx(0.001)

    def test_window_keeps_most_recent(self):
        monitor = PerformanceMonitor(max_samples=3)
        for duration in (5.0, 1.0, 2.0, 3.0):
            monitor.record_metric(metric("ledger_write", duration))
        op = monitor.get_summary()['operations']['ledger_write']
        assert op['max_duration'] == 3.0
        assert op['min_duration'] == 1.0
        assert op['total_duration'] == pytest.approx(11.0)

    def test_operation_context_records_failures(self):
        monitor = PerformanceMonitor()
        with monitor.start_operation("tree_build"):
            pass
        with pytest.raises(RuntimeError):
            with monitor.start_operation("tree_build"):
                raise RuntimeError("boom")

        op = monitor.get_summary()['operations']['tree_build']
        assert op['count'] == 2
        assert op['failures'] == 1
        assert "TREE_BUILD" in create_performance_report(monitor)

    def test_reset_and_empty_summary(self):
        monitor = PerformanceMonitor()
        monitor.record_metric(metric("verification", 0.5))
        monitor.reset()
        assert monitor.get_summary() == {'total_operations': 0, 'total_duration': 0.0, 'operations': {}}

    def test_invalid_sample_limit(self):
        with pytest.raises(ValueError):
            PerformanceMonitor(max_samples=0)


class TestAtomicWrite:

    def test_replaces_file_and_leaves_no_temp(self, tmp_path):
        target = tmp_path / "nested" / "state.json"
        atomic_write_json(target, {'votes': {'0': 1}})
        atomic_write_json(target, {'votes': {'0': 2}})

        assert json.loads(target.read_text()) == {'votes': {'0': 2}}
        assert [p.name for p in target.parent.iterdir()] == ["state.json"]
