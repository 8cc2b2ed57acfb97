"""
ProxMon package initialization.
"""

from .cluster import (
    ClusterConfig,
    ClusterInfoProvider,
    ClusterProviderFactory,
    SourceAdapter,
    ProxmoxSource
)

from .metrics import (
    MetricRecord,
    MetricFilter,
    MetricQueryService,
    MetricStore,
    InMemoryMetricStore,
    JsonMetricStore,
    CollectionResult,
    MetricsCollector
)

from .scheduler import CollectionScheduler, RetentionSweeper

__all__ = [
    'ClusterConfig',
    'ClusterInfoProvider',
    'ClusterProviderFactory',
    'SourceAdapter',
    'ProxmoxSource',
    'MetricRecord',
    'MetricFilter',
    'MetricQueryService',
    'MetricStore',
    'InMemoryMetricStore',
    'JsonMetricStore',
    'CollectionResult',
    'MetricsCollector',
    'CollectionScheduler',
    'RetentionSweeper'
]
