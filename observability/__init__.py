"""
Observability Module
====================

Logging and metrics for replication runs.

Components:
- metrics: Prometheus-compatible metrics collection
- logging: Structured logging with per-thread context

Usage:
    from observability import MetricsCollector, StructuredLogger, configure_logging

    configure_logging("INFO", json_format=True)

    metrics = MetricsCollector(backend="memory")
    metrics.record_table_refresh("orders", "success", 12.5)

    logger = StructuredLogger("replication")
    logger.log_pipeline_start("replication", run_id)
"""

from .metrics.collector import MetricsCollector
from .logging.structured_logger import (
    StructuredLogger,
    configure_logging,
    log_context,
    new_trace_id
)

__version__ = "1.0.0"
__all__ = [
    "MetricsCollector",
    "StructuredLogger",
    "configure_logging",
    "log_context",
    "new_trace_id"
]
