"""
Metrics Collector
=================

Prometheus-compatible metrics for replication runs.

Supports:
- Prometheus pushgateway integration
- In-memory metrics for testing and dry runs
"""

import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    push_to_gateway
)

logger = logging.getLogger(__name__)

BACKENDS = ("memory", "prometheus")


class MetricsCollector:
    """
    Collects and exports metrics for replication runs.

    Backends:
    - prometheus: registry pushed to a Pushgateway at the end of a run
    - memory: plain list of samples (for testing)
    """

    METRIC_DEFINITIONS = {
        "replication_table_refresh_total": {
            "type": "counter",
            "description": "Table refreshes by outcome",
            "labels": ["table_name", "status"]
        },
        "replication_table_refresh_duration_seconds": {
            "type": "histogram",
            "description": "Duration of a single table refresh",
            "labels": ["table_name", "status"]
        },
        "replication_table_dump_total": {
            "type": "counter",
            "description": "Source table dumps by outcome",
            "labels": ["table_name", "status"]
        },
        "replication_table_dump_bytes": {
            "type": "gauge",
            "description": "Compressed size of the last dump of a table",
            "labels": ["table_name"]
        },
        "replication_maintenance_duration_seconds": {
            "type": "histogram",
            "description": "Duration of post-refresh VACUUM/ANALYZE",
            "labels": ["status"]
        },
        "replication_cycle_duration_seconds": {
            "type": "histogram",
            "description": "Duration of a whole refresh cycle",
            "labels": ["status"]
        }
    }

    def __init__(
        self,
        backend: str = "memory",
        pushgateway_url: Optional[str] = None,
        job_name: str = "replication"
    ):
        """
        Initialize metrics collector.

        Args:
            backend: 'prometheus' or 'memory'
            pushgateway_url: Prometheus Pushgateway URL
            job_name: Job name for Prometheus
        """
        if backend not in BACKENDS:
            raise ValueError(f"unknown metrics backend {backend!r}, expected one of {BACKENDS}")

        self.backend = backend
        self.job_name = job_name
        self.pushgateway_url = pushgateway_url

        self._memory_store: List[Dict] = []
        self._prometheus_metrics: Dict = {}
        self._lock = threading.Lock()
        self._registry = CollectorRegistry()

        if backend == "prometheus":
            self._init_prometheus_metrics()

    def _init_prometheus_metrics(self):
        """Initialize Prometheus metric objects."""
        for name, definition in self.METRIC_DEFINITIONS.items():
            metric_type = definition["type"]
            description = definition["description"]
            labels = definition.get("labels", [])

            if metric_type == "counter":
                self._prometheus_metrics[name] = Counter(
                    name, description, labels, registry=self._registry
                )
            elif metric_type == "gauge":
                self._prometheus_metrics[name] = Gauge(
                    name, description, labels, registry=self._registry
                )
            elif metric_type == "histogram":
                self._prometheus_metrics[name] = Histogram(
                    name, description, labels, registry=self._registry
                )

    # =========================================
    # METRIC RECORDING METHODS
    # =========================================

    def _record(self, metric_name: str, metric_type: str, value: float, labels: Optional[Dict]):
        labels = labels or {}

        with self._lock:
            if self.backend == "prometheus":
                metric = self._prometheus_metrics[metric_name].labels(**labels)
                if metric_type == "counter":
                    metric.inc(value)
                elif metric_type == "gauge":
                    metric.set(value)
                else:
                    metric.observe(value)
            else:  # memory
                self._memory_store.append({
                    "metric_name": metric_name,
                    "metric_type": metric_type,
                    "value": value,
                    "labels": labels,
                    "timestamp": datetime.now().isoformat()
                })

    def record_counter(self, metric_name: str, value: float = 1, labels: Optional[Dict] = None):
        """Increment a counter metric."""
        self._record(metric_name, "counter", value, labels)

    def record_gauge(self, metric_name: str, value: float, labels: Optional[Dict] = None):
        """Set a gauge metric value."""
        self._record(metric_name, "gauge", value, labels)

    def record_histogram(self, metric_name: str, value: float, labels: Optional[Dict] = None):
        """Record a histogram observation."""
        self._record(metric_name, "histogram", value, labels)

    # =========================================
    # CONVENIENCE METHODS
    # =========================================

    def record_table_refresh(self, table_name: str, status: str, duration_seconds: float):
        labels = {"table_name": table_name, "status": status}
        self.record_counter("replication_table_refresh_total", 1, labels)
        self.record_histogram("replication_table_refresh_duration_seconds", duration_seconds, labels)

    def record_dump(self, table_name: str, status: str, size_bytes: int = 0):
        self.record_counter(
            "replication_table_dump_total", 1, {"table_name": table_name, "status": status}
        )
        if status == "success":
            self.record_gauge("replication_table_dump_bytes", size_bytes, {"table_name": table_name})

    def record_maintenance(self, status: str, duration_seconds: float):
        self.record_histogram(
            "replication_maintenance_duration_seconds", duration_seconds, {"status": status}
        )

    def record_cycle(self, status: str, duration_seconds: float):
        self.record_histogram(
            "replication_cycle_duration_seconds", duration_seconds, {"status": status}
        )

    # =========================================
    # EXPORT METHODS
    # =========================================

    def push_to_prometheus(self) -> bool:
        """Push metrics to Prometheus Pushgateway."""
        if self.backend != "prometheus":
            return False

        if not self.pushgateway_url:
            logger.warning("Pushgateway URL not configured")
            return False

        try:
            push_to_gateway(
                self.pushgateway_url,
                job=self.job_name,
                registry=self._registry
            )
            logger.info("Metrics pushed to Prometheus Pushgateway")
            return True
        except OSError as e:
            logger.error(f"Failed to push metrics: {e}")
            return False

    def get_prometheus_metrics(self) -> str:
        """Get metrics in Prometheus exposition format."""
        return generate_latest(self._registry).decode('utf-8')

    def get_memory_metrics(self) -> List[Dict]:
        """Get in-memory metrics store."""
        with self._lock:
            return self._memory_store.copy()

    def clear_memory_metrics(self):
        """Clear in-memory metrics store."""
        with self._lock:
            self._memory_store.clear()
