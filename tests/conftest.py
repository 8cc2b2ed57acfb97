"""
Shared fixtures: an in-process SourceAdapter and record factories.
"""
import threading
import time
from datetime import datetime, timezone

import pytest

from proxmon.cluster.source import (
    ClusterInfo,
    GuestStatus,
    GuestSummary,
    NodeStatus,
    NodeSummary,
    SourceAdapter,
)
from proxmon.errors import SourceUnreachableError
from proxmon.metrics.record import (
    CapacityStats,
    CpuStats,
    FullMetrics,
    MetricRecord,
    MinimalMetrics,
    NetworkStats,
)
from proxmon.metrics.storage import InMemoryMetricStore

GIB = 1024 ** 3


def node_status(cpu=0.25, cores=8, memory_total=64 * GIB, memory_used=16 * GIB,
                disk_total=500 * GIB, disk_used=100 * GIB, uptime=3600):
    return NodeStatus(
        cpu=cpu, cores=cores,
        memory_total=memory_total, memory_used=memory_used, memory_free=memory_total - memory_used,
        disk_total=disk_total, disk_used=disk_used, disk_free=disk_total - disk_used,
        uptime=uptime
    )


def guest_status(status='running', cpu=0.1, cpus=2, maxmem=8 * GIB, mem=2 * GIB,
                 maxdisk=32 * GIB, disk=8 * GIB, netin=1000, netout=500, uptime=600):
    return GuestStatus(status=status, cpu=cpu, cpus=cpus, maxmem=maxmem, mem=mem,
                       maxdisk=maxdisk, disk=disk, netin=netin, netout=netout, uptime=uptime)


class FakeSource(SourceAdapter):
    """
    In-process cluster topology.

    fail(method, *args) makes the matching call raise; delay(method, seconds)
    slows every call of a method down.
    """

    def __init__(self):
        self.clusters = {}
        self.failures = {}
        self.delays = {}
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def add_cluster(self, cluster_id, name=None):
        self.clusters[cluster_id] = {'name': name or f"cluster-{cluster_id}", 'nodes': {}}

    def add_node(self, cluster_id, node, status=None):
        self.clusters[cluster_id]['nodes'][node] = {
            'status': status or node_status(), 'vm': {}, 'container': {}}

    def add_vm(self, cluster_id, node, vmid, name, status=None):
        self.clusters[cluster_id]['nodes'][node]['vm'][vmid] = (name, status or guest_status())

    def add_container(self, cluster_id, node, vmid, name, status=None):
        self.clusters[cluster_id]['nodes'][node]['container'][vmid] = (name, status or guest_status())

    def fail(self, method, *args, error=None):
        self.failures[(method,) + args] = error or SourceUnreachableError(f"{method} failed")

    def delay(self, method, seconds):
        self.delays[method] = seconds

    def _call(self, method, *args, timeout=None):
        with self._lock:
            self.calls.append((method, args, timeout))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if method in self.delays:
                time.sleep(self.delays[method])
            error = self.failures.get((method,) + args)
            if error is not None:
                raise error
        finally:
            with self._lock:
                self.in_flight -= 1

    def list_clusters(self):
        return [ClusterInfo(id=cid, name=c['name']) for cid, c in self.clusters.items()]

    def list_nodes(self, cluster_id, timeout=None):
        self._call('list_nodes', cluster_id, timeout=timeout)
        return [NodeSummary(node=n, status='online') for n in self.clusters[cluster_id]['nodes']]

    def _guests(self, kind, cluster_id, node):
        guests = self.clusters[cluster_id]['nodes'][node][kind]
        return [GuestSummary(vmid=vmid, name=name, status=status.status)
                for vmid, (name, status) in guests.items()]

    def list_vms(self, cluster_id, node, timeout=None):
        self._call('list_vms', cluster_id, node, timeout=timeout)
        return self._guests('vm', cluster_id, node)

    def list_containers(self, cluster_id, node, timeout=None):
        self._call('list_containers', cluster_id, node, timeout=timeout)
        return self._guests('container', cluster_id, node)

    def get_node_status(self, cluster_id, node, timeout=None):
        self._call('get_node_status', cluster_id, node, timeout=timeout)
        return self.clusters[cluster_id]['nodes'][node]['status']

    def get_vm_status(self, cluster_id, node, vmid, timeout=None):
        self._call('get_vm_status', cluster_id, node, vmid, timeout=timeout)
        return self.clusters[cluster_id]['nodes'][node]['vm'][vmid][1]

    def get_container_status(self, cluster_id, node, vmid, timeout=None):
        self._call('get_container_status', cluster_id, node, vmid, timeout=timeout)
        return self.clusters[cluster_id]['nodes'][node]['container'][vmid][1]

    def start_vm(self, cluster_id, node, vmid, timeout=None):
        self._call('start_vm', cluster_id, node, vmid, timeout=timeout)
        return f"UPID:{node}:qmstart:{vmid}"

    def stop_vm(self, cluster_id, node, vmid, timeout=None):
        self._call('stop_vm', cluster_id, node, vmid, timeout=timeout)
        return f"UPID:{node}:qmstop:{vmid}"

    def start_container(self, cluster_id, node, vmid, timeout=None):
        self._call('start_container', cluster_id, node, vmid, timeout=timeout)
        return f"UPID:{node}:vzstart:{vmid}"

    def stop_container(self, cluster_id, node, vmid, timeout=None):
        self._call('stop_container', cluster_id, node, vmid, timeout=timeout)
        return f"UPID:{node}:vzstop:{vmid}"

    def get_version(self, cluster_id, timeout=None):
        self._call('get_version', cluster_id, timeout=timeout)
        return {'version': '8.2.4', 'release': '8.2'}


def build_record(cluster_id=1, node='pve1', type='node', name=None, vmid=None,
                 cpu=10.0, memory=(8 * GIB, 4 * GIB), disk=(100 * GIB, 50 * GIB),
                 network=None, status='running', timestamp=None):
    """Build a MetricRecord; status other than 'running' gives a minimal record."""
    if type != 'node' and vmid is None:
        vmid = 100
    if status != 'running':
        metrics = MinimalMetrics(status=status)
    else:
        if network is None:
            network = (0, 0) if type == 'node' else (1000, 500)
        metrics = FullMetrics(
            cpu=CpuStats(usage=cpu, cores=4),
            memory=CapacityStats.derive(*memory),
            disk=CapacityStats.derive(*disk),
            network=NetworkStats(rx=network[0], tx=network[1]),
            uptime=1200,
            status=status
        )
    return MetricRecord(
        cluster_id=cluster_id, node=node, type=type, name=name or (node if type == 'node' else f"{type}-{vmid}"),
        vmid=vmid, metrics=metrics,
        timestamp=timestamp or datetime.now(timezone.utc)
    )


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def memory_store():
    return InMemoryMetricStore()


@pytest.fixture
def make_record():
    return build_record
