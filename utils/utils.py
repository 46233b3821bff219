"""
Utilities for the anonymous voting service: logging setup, performance
monitoring, and crash-safe JSON persistence.
"""

import json
import logging
import os
import tempfile
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Mapping, Optional

import numpy as np
import psutil

logger = logging.getLogger(__name__)

DEFAULT_MAX_SAMPLES = 1000


@dataclass
class PerformanceMetrics:
    operation: str
    duration_seconds: float
    cpu_percent: float
    memory_mb: float
    timestamp: float
    additional_data: Optional[Dict[str, Any]] = None


def setup_logging(log_level: str = "INFO", log_file: Optional[Path] = None):
    """Install file and console handlers on the root logger"""
    if log_file is None:
        log_file = Path("logs") / \
            f"voting_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    # Clear existing handlers to avoid duplicates
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    logger.info(f"Logging initialized. Log file: {log_file}")
    return logger


class PerformanceMonitor:
    """Collects per-operation timings with CPU and memory samples.

    Only the most recent ``max_samples`` metrics are kept for the timing
    statistics. Counts, total duration and failures are running totals over
    every recorded operation.
    """

    def __init__(self, max_samples: int = DEFAULT_MAX_SAMPLES):
        if max_samples < 1:
            raise ValueError(f"max_samples must be positive, got {max_samples}")
        self.metrics: Deque[PerformanceMetrics] = deque(maxlen=max_samples)
        self.totals: Dict[str, Dict[str, float]] = {}
        self.process = psutil.Process()

    def start_operation(self, operation_name: str) -> 'OperationContext':
        return OperationContext(self, operation_name)

    def record_metric(self, metric: PerformanceMetrics):
        self.metrics.append(metric)

        totals = self.totals.setdefault(metric.operation, {
            'count': 0,
            'total_duration': 0.0,
            'failures': 0,
            'peak_memory_mb': 0.0,
        })
        totals['count'] += 1
        totals['total_duration'] += metric.duration_seconds
        if (metric.additional_data or {}).get('exception'):
            totals['failures'] += 1
        totals['peak_memory_mb'] = max(totals['peak_memory_mb'], metric.memory_mb)

    def get_summary(self) -> Dict[str, Any]:
        if not self.totals:
            return {
                'total_operations': 0,
                'total_duration': 0.0,
                'operations': {}
            }

        operation_groups: Dict[str, List[PerformanceMetrics]] = {}
        for metric in self.metrics:
            operation_groups.setdefault(metric.operation, []).append(metric)

        summary = {
            'total_operations': sum(int(t['count']) for t in self.totals.values()),
            'operations': {}
        }

        for op_name, totals in self.totals.items():
            metrics = operation_groups.get(op_name, [])
            durations = np.array([m.duration_seconds for m in metrics])
            cpu_usages = [m.cpu_percent for m in metrics if m.cpu_percent > 0]
            memory_usages = [m.memory_mb for m in metrics if m.memory_mb > 0]
            count = int(totals['count'])
            total = totals['total_duration']

            summary['operations'][op_name] = {
                'count': count,
                'total_duration': total,
                'avg_duration': total / count,
                'min_duration': float(durations.min()) if len(durations) else 0.0,
                'max_duration': float(durations.max()) if len(durations) else 0.0,
                'std_duration': float(np.std(durations)) if len(durations) > 1 else 0.0,
                'p95_duration': float(np.percentile(durations, 95)) if len(durations) else 0.0,
                'avg_cpu_percent': float(np.mean(cpu_usages)) if cpu_usages else 0.0,
                'avg_memory_mb': float(np.mean(memory_usages)) if memory_usages else 0.0,
                'peak_memory_mb': totals['peak_memory_mb'],
                'failures': int(totals['failures']),
                'samples': len(metrics),
                'throughput_ops_per_sec': count / total if total > 0 else 0.0
            }

        summary['total_duration'] = sum(
            op_data['total_duration']
            for op_data in summary['operations'].values()
        )

        return summary

    def reset(self):
        self.metrics.clear()
        self.totals.clear()


class OperationContext:
    """Context manager timing one operation"""

    def __init__(self, monitor: PerformanceMonitor, operation_name: str):
        self.monitor = monitor
        self.operation_name = operation_name
        self.start_time = 0.0
        self.start_cpu = 0.0
        self.start_memory = 0.0

    def __enter__(self):
        self.start_time = time.time()
        try:
            self.start_cpu = self.monitor.process.cpu_percent()
            self.start_memory = self.monitor.process.memory_info().rss / 1024 / 1024
        except psutil.Error as e:
            logger.debug(f"Performance monitoring error: {e}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.time() - self.start_time

        end_cpu = 0.0
        end_memory = self.start_memory
        try:
            end_cpu = self.monitor.process.cpu_percent()
            end_memory = self.monitor.process.memory_info().rss / 1024 / 1024
        except psutil.Error as e:
            logger.debug(f"Performance monitoring error: {e}")

        self.monitor.record_metric(PerformanceMetrics(
            operation=self.operation_name,
            duration_seconds=duration,
            cpu_percent=end_cpu,
            memory_mb=max(self.start_memory, end_memory),
            timestamp=self.start_time,
            additional_data={'exception': exc_type is not None}
        ))


def atomic_write_json(path: Path, data: Any):
    """Write JSON so readers see the old file or the new one, never a torn write"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, default=str)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def format_duration(seconds: float) -> str:
    """Format duration in human-readable format"""
    if seconds < 1:
        return f"{seconds*1000:.1f}ms"
    elif seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.1f}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = seconds % 60
        return f"{hours}h {minutes}m {secs:.1f}s"


def create_tally_report(tally: Mapping[int, int], voting_id: Optional[int] = None) -> str:
    """Human-readable tally with per-option percentages"""
    lines = []
    lines.append("=" * 60)
    lines.append("POLL RESULTS")
    lines.append("=" * 60)
    if voting_id is not None:
        lines.append(f"votingID: {voting_id}")

    total_votes = sum(tally.values())
    for option in sorted(tally):
        count = tally[option]
        percentage = (count / total_votes * 100) if total_votes > 0 else 0
        lines.append(f"  Option {option}: {count} votes ({percentage:.1f}%)")
    lines.append(f"  Total Votes: {total_votes}")
    lines.append("=" * 60)
    return "\n".join(lines)


def create_performance_report(metrics: PerformanceMonitor) -> str:
    summary = metrics.get_summary()

    report = []
    report.append("=" * 60)
    report.append("PERFORMANCE REPORT")
    report.append("=" * 60)
    report.append(f"Total Operations: {summary.get('total_operations', 0)}")
    report.append(f"Total Duration: {format_duration(summary.get('total_duration', 0.0))}")

    for op_name, op_data in summary['operations'].items():
        report.append(f"\n{op_name.upper()}:")
        report.append(f"  Executions: {op_data['count']} ({op_data['failures']} failed)")
        report.append(f"  Average Time: {format_duration(op_data['avg_duration'])}")
        report.append(f"  p95 Time: {format_duration(op_data['p95_duration'])}")
        report.append(f"  Throughput: {op_data['throughput_ops_per_sec']:.2f} ops/sec")
        if op_data['peak_memory_mb'] > 0:
            report.append(f"  Peak Memory: {op_data['peak_memory_mb']:.1f} MB")

    report.append("=" * 60)
    return "\n".join(report)


__all__ = [
    'PerformanceMetrics',
    'PerformanceMonitor',
    'OperationContext',
    'setup_logging',
    'atomic_write_json',
    'format_duration',
    'create_tally_report',
    'create_performance_report',
]
