import logging
from typing import Optional

from prometheus_client import Counter, Histogram, Info, generate_latest
from prometheus_client.core import CollectorRegistry

logger = logging.getLogger(__name__)

# Prometheus Registry
REGISTRY = CollectorRegistry()

archive_operations_total = Counter(
    'archive_operations_total',
    'Export/import pipeline runs by final status',
    ['operation', 'status'],
    registry=REGISTRY
)

archive_operation_duration_seconds = Histogram(
    'archive_operation_duration_seconds',
    'Pipeline run duration in seconds',
    ['operation'],
    buckets=[0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0],
    registry=REGISTRY
)

archive_files_total = Counter(
    'archive_files_total',
    'Attachment files handled, by direction, kind and outcome',
    ['direction', 'kind', 'outcome'],
    registry=REGISTRY
)

archive_rows_total = Counter(
    'archive_rows_total',
    'Interchange rows handled, by record type and outcome',
    ['record_type', 'outcome'],
    registry=REGISTRY
)

system_info = Info(
    'archive_info',
    'System information',
    registry=REGISTRY
)


class PrometheusMetricsCollector:
    """Thin facade over the archive pipeline metrics"""

    def __init__(self):
        system_info.info({
            'version': '1.0.0',
            'service': 'collection-archive'
        })

    def record_operation(
        self,
        operation: str,
        duration_seconds: float,
        status: str,
    ):
        archive_operations_total.labels(operation=operation, status=status).inc()
        archive_operation_duration_seconds.labels(operation=operation).observe(duration_seconds)

    def record_file(self, direction: str, kind: str, outcome: str, count: int = 1):
        """direction is 'export' or 'import'; outcome e.g. 'downloaded', 'uploaded', 'skipped', 'failed'"""
        if count:
            archive_files_total.labels(direction=direction, kind=kind, outcome=outcome).inc(count)

    def record_row(self, record_type: str, outcome: str, count: int = 1):
        if count:
            archive_rows_total.labels(record_type=record_type, outcome=outcome).inc(count)

    def get_metrics(self) -> str:
        """Get Prometheus metrics in text format"""
        return generate_latest(REGISTRY).decode('utf-8')

    def read_value(self, name: str, labels: Optional[dict] = None) -> float:
        """Current sample value, 0.0 when the series has not been touched yet"""
        value = REGISTRY.get_sample_value(name, labels or {})
        return value or 0.0


# Global collector instance
prometheus_collector = PrometheusMetricsCollector()
