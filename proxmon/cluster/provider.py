"""
Cluster Configuration Provider Module

This module provides an extensible interface for loading the connection
settings of the monitored virtualization clusters from various sources
including YAML files and environment variables.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Dict, Any, Mapping
import logging
import os
import yaml

logger = logging.getLogger(__name__)


@dataclass
class ClusterConfig:
    """Connection settings for one cluster."""
    id: int
    name: str
    host: str
    user: str = ""
    token_name: str = ""
    token_value: str = ""
    verify_ssl: bool = False

    @property
    def token_id(self) -> str:
        return f"{self.user}!{self.token_name}"


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


class ClusterInfoProvider(ABC):
    """Abstract base class for cluster configuration providers."""

    @abstractmethod
    def get_clusters(self) -> List[ClusterConfig]:
        """Retrieve all configured clusters."""
        pass

    @abstractmethod
    def refresh(self) -> None:
        """Reload cluster configuration from the source."""
        pass

    def get_cluster(self, cluster_id: int) -> Optional[ClusterConfig]:
        """Retrieve a specific cluster by id."""
        for cluster in self.get_clusters():
            if cluster.id == cluster_id:
                return cluster
        return None


class FileClusterProvider(ClusterInfoProvider):
    """Cluster configuration provider that reads from a YAML file."""

    def __init__(self, file_path: str):
        self.file_path = file_path
        self._clusters: List[ClusterConfig] = []
        self.refresh()

    def get_clusters(self) -> List[ClusterConfig]:
        return self._clusters

    def refresh(self) -> None:
        self._clusters = []
        if not os.path.exists(self.file_path):
            logger.warning(f"Cluster file not found: {self.file_path}")
            return

        with open(self.file_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)

        if not data or 'clusters' not in data:
            return

        for index, cluster_data in enumerate(data['clusters'], start=1):
            cluster = ClusterConfig(
                id=int(cluster_data.get('id', index)),
                name=cluster_data['name'],
                host=cluster_data['host'],
                user=cluster_data.get('user', ''),
                token_name=cluster_data.get('token_name', ''),
                token_value=cluster_data.get('token_value', ''),
                verify_ssl=_parse_bool(cluster_data.get('verify_ssl', False))
            )
            self._clusters.append(cluster)

        logger.info(f"Loaded {len(self._clusters)} cluster configurations from {self.file_path}")


class EnvClusterProvider(ClusterInfoProvider):
    """
    Cluster configuration provider that reads PROXMOX_CLUSTER_<n>_* variables.

    Clusters are numbered from 1; scanning stops at the first n without a
    PROXMOX_CLUSTER_<n>_NAME variable.
    """

    PREFIX = "PROXMOX_CLUSTER"

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = environ if environ is not None else os.environ
        self._clusters: List[ClusterConfig] = []
        self.refresh()

    def get_clusters(self) -> List[ClusterConfig]:
        return self._clusters

    def refresh(self) -> None:
        self._clusters = []
        i = 1
        while self.environ.get(f"{self.PREFIX}_{i}_NAME"):
            prefix = f"{self.PREFIX}_{i}_"
            self._clusters.append(ClusterConfig(
                id=i,
                name=self.environ[prefix + 'NAME'],
                host=self.environ.get(prefix + 'HOST', ''),
                user=self.environ.get(prefix + 'USER', ''),
                token_name=self.environ.get(prefix + 'TOKEN_NAME', ''),
                token_value=self.environ.get(prefix + 'TOKEN_VALUE', ''),
                verify_ssl=_parse_bool(self.environ.get(prefix + 'VERIFY_SSL', 'false'))
            ))
            i += 1

        if not self._clusters:
            logger.warning("No clusters configured in environment variables")
        else:
            logger.info(f"Loaded {len(self._clusters)} cluster configurations from environment")


class ClusterProviderFactory:
    """Factory class for creating cluster configuration providers."""

    @staticmethod
    def create(provider_type: str, config: Dict[str, Any]) -> ClusterInfoProvider:
        """Create a cluster provider based on type and configuration."""
        if provider_type == 'file':
            return FileClusterProvider(config.get('file_path', 'config/clusters.yaml'))
        elif provider_type == 'env':
            return EnvClusterProvider()
        else:
            raise ValueError(f"Unknown provider type: {provider_type}")
