"""Utilities for the voting system."""

from .utils import (
    PerformanceMonitor,
    atomic_write_json,
    create_performance_report,
    create_tally_report,
    setup_logging,
)

__all__ = [
    'setup_logging',
    'PerformanceMonitor',
    'atomic_write_json',
    'create_performance_report',
    'create_tally_report',
]
