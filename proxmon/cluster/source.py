"""
Source Adapter Module

The collection pipeline reads the virtualization platform through the
SourceAdapter interface. ProxmoxSource implements it against the Proxmox VE
REST API.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, List, Optional
import logging
import re
import requests

from proxmon.cluster.provider import ClusterConfig
from proxmon.errors import (
    SourceError,
    SourceRejectedError,
    SourceUnreachableError,
    UnknownClusterError,
)

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8006
DEFAULT_TIMEOUT = 30
# Floor for per-call timeouts; an exhausted cycle deadline passes 0
MIN_TIMEOUT = 0.001


@dataclass
class ClusterInfo:
    id: int
    name: str


@dataclass
class NodeSummary:
    node: str
    status: str = "unknown"


@dataclass
class GuestSummary:
    """A VM or container as listed on a node."""
    vmid: int
    name: str
    status: str = "unknown"

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'GuestSummary':
        vmid = int(data['vmid'])
        return cls(vmid=vmid, name=data.get('name') or str(vmid), status=data.get('status', 'unknown'))


@dataclass
class NodeStatus:
    """Current utilization of a physical node."""
    cpu: float
    cores: int
    memory_total: int
    memory_used: int
    memory_free: int
    disk_total: int
    disk_used: int
    disk_free: int
    uptime: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'NodeStatus':
        memory = data.get('memory') or {}
        rootfs = data.get('rootfs') or {}
        return cls(
            cpu=float(data.get('cpu') or 0),
            cores=int((data.get('cpuinfo') or {}).get('cpus') or 0),
            memory_total=int(memory.get('total') or 0),
            memory_used=int(memory.get('used') or 0),
            memory_free=int(memory.get('free') or 0),
            disk_total=int(rootfs.get('total') or 0),
            disk_used=int(rootfs.get('used') or 0),
            disk_free=int(rootfs.get('free') or 0),
            uptime=int(data.get('uptime') or 0)
        )


@dataclass
class GuestStatus:
    """Current state of a VM or container."""
    status: str
    cpu: float = 0.0
    cpus: int = 0
    maxmem: int = 0
    mem: int = 0
    maxdisk: int = 0
    disk: int = 0
    netin: float = 0
    netout: float = 0
    uptime: int = 0

    @property
    def is_running(self) -> bool:
        return self.status == 'running'

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'GuestStatus':
        return cls(
            status=data.get('status', 'unknown'),
            cpu=float(data.get('cpu') or 0),
            cpus=int(data.get('cpus') or 0),
            maxmem=int(data.get('maxmem') or 0),
            mem=int(data.get('mem') or 0),
            maxdisk=int(data.get('maxdisk') or 0),
            disk=int(data.get('disk') or 0),
            netin=data.get('netin') or 0,
            netout=data.get('netout') or 0,
            uptime=int(data.get('uptime') or 0)
        )


class SourceAdapter(ABC):
    """
    Read/control access to the virtualization platform.

    Every call may block on the network and may fail with a SourceError
    subclass. `timeout` is the per-call deadline in seconds; None means the
    adapter's default.
    """

    @abstractmethod
    def list_clusters(self) -> List[ClusterInfo]:
        pass

    @abstractmethod
    def list_nodes(self, cluster_id: int, timeout: Optional[float] = None) -> List[NodeSummary]:
        pass

    @abstractmethod
    def list_vms(self, cluster_id: int, node: str,
                 timeout: Optional[float] = None) -> List[GuestSummary]:
        pass

    @abstractmethod
    def list_containers(self, cluster_id: int, node: str,
                        timeout: Optional[float] = None) -> List[GuestSummary]:
        pass

    @abstractmethod
    def get_node_status(self, cluster_id: int, node: str,
                        timeout: Optional[float] = None) -> NodeStatus:
        pass

    @abstractmethod
    def get_vm_status(self, cluster_id: int, node: str, vmid: int,
                      timeout: Optional[float] = None) -> GuestStatus:
        pass

    @abstractmethod
    def get_container_status(self, cluster_id: int, node: str, vmid: int,
                             timeout: Optional[float] = None) -> GuestStatus:
        pass

    @abstractmethod
    def start_vm(self, cluster_id: int, node: str, vmid: int,
                 timeout: Optional[float] = None) -> str:
        pass

    @abstractmethod
    def stop_vm(self, cluster_id: int, node: str, vmid: int,
                timeout: Optional[float] = None) -> str:
        pass

    @abstractmethod
    def start_container(self, cluster_id: int, node: str, vmid: int,
                        timeout: Optional[float] = None) -> str:
        pass

    @abstractmethod
    def stop_container(self, cluster_id: int, node: str, vmid: int,
                       timeout: Optional[float] = None) -> str:
        pass

    @abstractmethod
    def get_version(self, cluster_id: int, timeout: Optional[float] = None) -> Dict[str, Any]:
        pass

    def test_connection(self, cluster_id: int, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Check that the cluster answers; raises the classified error otherwise."""
        logger.info(f"Testing connection to cluster ID: {cluster_id}")
        version = self.get_version(cluster_id, timeout=timeout)
        logger.info(f"Connection successful. Platform version: {version}")
        return {'success': True, 'version': version}


def normalize_host(host: str) -> str:
    """Strip any scheme and path; append the default API port if none is given."""
    host = re.sub(r'^https?://', '', host.strip()).split('/')[0]
    if ':' not in host:
        host = f"{host}:{DEFAULT_PORT}"
    return host


class ProxmoxSource(SourceAdapter):
    """
    SourceAdapter for the Proxmox VE REST API.

    Keeps one requests.Session per cluster id. Sessions are shared between
    collector worker threads for read-only calls.
    """

    def __init__(self, clusters: List[ClusterConfig], timeout: float = DEFAULT_TIMEOUT):
        self.clusters = {cluster.id: cluster for cluster in clusters}
        self.timeout = timeout
        self._sessions: Dict[int, requests.Session] = {}

        for cluster in clusters:
            self._sessions[cluster.id] = self._create_session(cluster)
            logger.info(f"Initialized connection to cluster: {cluster.name}")

    @staticmethod
    def _create_session(cluster: ClusterConfig) -> requests.Session:
        session = requests.Session()
        session.headers.update({
            'Authorization': f"PVEAPIToken={cluster.token_id}={cluster.token_value}",
            'Accept': 'application/json'
        })
        session.verify = cluster.verify_ssl
        return session

    def _base_url(self, cluster_id: int) -> str:
        return f"https://{normalize_host(self.clusters[cluster_id].host)}/api2/json"

    def _request(self, cluster_id: int, method: str, path: str,
                 timeout: Optional[float] = None) -> Any:
        session = self._sessions.get(cluster_id)
        if session is None:
            raise UnknownClusterError(cluster_id)

        url = f"{self._base_url(cluster_id)}{path}"
        if timeout is None:
            timeout = self.timeout
        try:
            response = session.request(method, url, timeout=max(timeout, MIN_TIMEOUT))
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.error(f"Cluster {cluster_id} unreachable: {e}")
            raise SourceUnreachableError(f"Failed to communicate with cluster {cluster_id}: {e}") from e
        except requests.RequestException as e:
            raise SourceError(f"Request to cluster {cluster_id} failed: {e}") from e

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.error(f"Cluster {cluster_id} rejected {method} {path}: {response.status_code} {message}")
            raise SourceRejectedError(response.status_code, message)

        try:
            return response.json().get('data')
        except ValueError as e:
            raise SourceError(f"Invalid response from cluster {cluster_id}: {e}") from e

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            if body.get('message'):
                return str(body['message'])
            if body.get('errors'):
                return str(body['errors'])
        return response.reason or 'Platform API error'

    def list_clusters(self) -> List[ClusterInfo]:
        return [ClusterInfo(id=c.id, name=c.name) for c in self.clusters.values()]

    def list_nodes(self, cluster_id: int, timeout: Optional[float] = None) -> List[NodeSummary]:
        data = self._request(cluster_id, 'GET', '/nodes', timeout) or []
        return [NodeSummary(node=n['node'], status=n.get('status', 'unknown')) for n in data]

    def list_vms(self, cluster_id: int, node: str,
                 timeout: Optional[float] = None) -> List[GuestSummary]:
        data = self._request(cluster_id, 'GET', f'/nodes/{node}/qemu', timeout) or []
        return [GuestSummary.from_api(vm) for vm in data]

    def list_containers(self, cluster_id: int, node: str,
                        timeout: Optional[float] = None) -> List[GuestSummary]:
        data = self._request(cluster_id, 'GET', f'/nodes/{node}/lxc', timeout) or []
        return [GuestSummary.from_api(ct) for ct in data]

    def get_node_status(self, cluster_id: int, node: str,
                        timeout: Optional[float] = None) -> NodeStatus:
        data = self._request(cluster_id, 'GET', f'/nodes/{node}/status', timeout) or {}
        return NodeStatus.from_api(data)

    def get_vm_status(self, cluster_id: int, node: str, vmid: int,
                      timeout: Optional[float] = None) -> GuestStatus:
        data = self._request(cluster_id, 'GET', f'/nodes/{node}/qemu/{vmid}/status/current', timeout) or {}
        return GuestStatus.from_api(data)

    def get_container_status(self, cluster_id: int, node: str, vmid: int,
                             timeout: Optional[float] = None) -> GuestStatus:
        data = self._request(cluster_id, 'GET', f'/nodes/{node}/lxc/{vmid}/status/current', timeout) or {}
        return GuestStatus.from_api(data)

    def start_vm(self, cluster_id: int, node: str, vmid: int,
                 timeout: Optional[float] = None) -> str:
        return self._request(cluster_id, 'POST', f'/nodes/{node}/qemu/{vmid}/status/start', timeout)

    def stop_vm(self, cluster_id: int, node: str, vmid: int,
                timeout: Optional[float] = None) -> str:
        return self._request(cluster_id, 'POST', f'/nodes/{node}/qemu/{vmid}/status/stop', timeout)

    def start_container(self, cluster_id: int, node: str, vmid: int,
                        timeout: Optional[float] = None) -> str:
        return self._request(cluster_id, 'POST', f'/nodes/{node}/lxc/{vmid}/status/start', timeout)

    def stop_container(self, cluster_id: int, node: str, vmid: int,
                       timeout: Optional[float] = None) -> str:
        return self._request(cluster_id, 'POST', f'/nodes/{node}/lxc/{vmid}/status/stop', timeout)

    def get_version(self, cluster_id: int, timeout: Optional[float] = None) -> Dict[str, Any]:
        return self._request(cluster_id, 'GET', '/version', timeout) or {}

    def close(self) -> None:
        for session in self._sessions.values():
            session.close()
