"""
Cluster module initialization.
"""

from .provider import (
    ClusterConfig,
    ClusterInfoProvider,
    FileClusterProvider,
    EnvClusterProvider,
    ClusterProviderFactory
)

from .source import (
    ClusterInfo,
    NodeSummary,
    GuestSummary,
    NodeStatus,
    GuestStatus,
    SourceAdapter,
    ProxmoxSource
)

__all__ = [
    'ClusterConfig',
    'ClusterInfoProvider',
    'FileClusterProvider',
    'EnvClusterProvider',
    'ClusterProviderFactory',
    'ClusterInfo',
    'NodeSummary',
    'GuestSummary',
    'NodeStatus',
    'GuestStatus',
    'SourceAdapter',
    'ProxmoxSource'
]
