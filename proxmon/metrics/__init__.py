"""
Metrics module initialization.
"""

from .record import (
    MetricRecord,
    FullMetrics,
    MinimalMetrics,
    CpuStats,
    CapacityStats,
    NetworkStats
)

from .query import (
    MetricFilter,
    AggregateBucket,
    MetricQueryService
)

from .storage import (
    MetricStore,
    InMemoryMetricStore,
    JsonMetricStore
)

from .collector import (
    CollectionResult,
    MetricsCollector
)

__all__ = [
    'MetricRecord',
    'FullMetrics',
    'MinimalMetrics',
    'CpuStats',
    'CapacityStats',
    'NetworkStats',
    'MetricFilter',
    'AggregateBucket',
    'MetricQueryService',
    'MetricStore',
    'InMemoryMetricStore',
    'JsonMetricStore',
    'CollectionResult',
    'MetricsCollector'
]
