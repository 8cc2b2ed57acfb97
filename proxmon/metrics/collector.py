"""
Metrics Collection Module

Walks every configured cluster (cluster -> node -> VM/container) through a
SourceAdapter and writes one MetricRecord per resource to a MetricStore.
Each step of the walk is isolated: a failing branch is logged and the rest
of the cycle carries on.
"""

from concurrent.futures import ThreadPoolExecutor, FIRST_COMPLETED, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Tuple
import logging
import time

from proxmon.cluster.source import ClusterInfo, GuestStatus, NodeStatus, SourceAdapter
from proxmon.errors import CollectionFailedError, CollectionTimeoutError
from proxmon.metrics.record import (
    CapacityStats,
    CpuStats,
    FullMetrics,
    MetricRecord,
    MinimalMetrics,
    NetworkStats,
    utcnow,
)
from proxmon.metrics.storage import MetricStore

logger = logging.getLogger(__name__)


def build_node_record(cluster_id: int, node: str, status: NodeStatus,
                      timestamp: Optional[datetime] = None) -> MetricRecord:
    """Node records are always 'running': the node answered its status call."""
    metrics = FullMetrics(
        cpu=CpuStats(usage=status.cpu * 100, cores=status.cores),
        memory=CapacityStats.derive(status.memory_total, status.memory_used, status.memory_free),
        disk=CapacityStats.derive(status.disk_total, status.disk_used, status.disk_free),
        # Not exposed at node level
        network=NetworkStats(rx=0, tx=0),
        uptime=status.uptime,
        status='running'
    )
    return MetricRecord(cluster_id=cluster_id, node=node, type='node', name=node,
                        metrics=metrics, timestamp=timestamp or utcnow())


def build_guest_record(cluster_id: int, node: str, resource_type: str, vmid: int, name: str,
                       status: GuestStatus, timestamp: Optional[datetime] = None) -> MetricRecord:
    """Build a VM or container record; non-running guests get a status-only record."""
    if not status.is_running:
        metrics = MinimalMetrics(status=status.status)
    else:
        metrics = FullMetrics(
            cpu=CpuStats(usage=status.cpu * 100, cores=status.cpus),
            memory=CapacityStats.derive(status.maxmem, status.mem),
            disk=CapacityStats.derive(status.maxdisk, status.disk),
            network=NetworkStats(rx=status.netin, tx=status.netout),
            uptime=status.uptime,
            status=status.status
        )
    return MetricRecord(cluster_id=cluster_id, node=node, vmid=vmid, type=resource_type,
                        name=name, metrics=metrics, timestamp=timestamp or utcnow())


class Deadline:
    """Absolute deadline for a collection cycle; None means unbounded."""

    def __init__(self, timeout: Optional[float] = None):
        self.expires_at = None if timeout is None else time.monotonic() + timeout

    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    def check(self) -> None:
        if self.expired():
            raise CollectionTimeoutError("Collection deadline exceeded")


@dataclass
class CollectionResult:
    """Outcome of one collection cycle."""
    written: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def total_failure(self) -> bool:
        return self.written == 0 and self.failed > 0

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self):
        return {
            'written': self.written,
            'failed': self.failed,
            'errors': list(self.errors),
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'duration_seconds': self.duration_seconds
        }


# A follow-up task: callable plus its positional arguments
_Task = Tuple[Callable, tuple]


@dataclass
class _StepOutcome:
    written: int = 0
    errors: List[str] = field(default_factory=list)
    follow_ups: List[_Task] = field(default_factory=list)


class MetricsCollector:
    """
    Collects metrics for every cluster, node, VM and container.

    Steps run on a bounded thread pool; the calling thread hands out
    follow-up steps as their parents complete, so no worker ever waits on
    another worker.
    """

    def __init__(self, source: SourceAdapter, store: MetricStore, max_workers: int = 4):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.source = source
        self.store = store
        self.max_workers = max_workers

    def collect_all(self, timeout: Optional[float] = None) -> CollectionResult:
        """
        Run one collection cycle.

        Returns the cycle result on full or partial success. Raises
        CollectionFailedError when nothing was written and at least one
        branch failed, and CollectionTimeoutError when `timeout` seconds
        elapse first. No step of the cycle is still running once this returns
        or raises.
        """
        deadline = Deadline(timeout)
        result = CollectionResult()
        clusters = self.source.list_clusters()
        logger.info(f"Starting metric collection cycle for {len(clusters)} clusters")

        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='collector')
        timed_out = False
        try:
            pending = {pool.submit(self._collect_cluster, cluster, deadline) for cluster in clusters}
            while pending and not timed_out:
                done, pending = wait(pending, timeout=deadline.remaining(), return_when=FIRST_COMPLETED)
                if not done:
                    timed_out = True
                    break
                for future in done:
                    try:
                        outcome = future.result()
                    except CollectionTimeoutError:
                        timed_out = True
                        break
                    result.written += outcome.written
                    result.failed += len(outcome.errors)
                    result.errors.extend(outcome.errors)
                    for func, args in outcome.follow_ups:
                        pending.add(pool.submit(func, *args))
        finally:
            # Steps already running finish before the cycle ends; queued ones are dropped
            pool.shutdown(wait=True, cancel_futures=timed_out)

        result.finished_at = utcnow()
        if timed_out:
            logger.error(f"Collection cycle timed out after {result.duration_seconds:.1f}s "
                         f"({result.written} records written)")
            raise CollectionTimeoutError(f"Collection did not finish within {timeout} seconds")

        logger.info(f"Collection cycle completed: {result.written} records written, "
                    f"{result.failed} failures")

        if result.total_failure:
            raise CollectionFailedError(
                f"Collection failed for every resource ({result.failed} failures)", result)
        return result

    def _collect_cluster(self, cluster: ClusterInfo, deadline: Deadline) -> _StepOutcome:
        outcome = _StepOutcome()
        deadline.check()
        try:
            nodes = self.source.list_nodes(cluster.id, timeout=deadline.remaining())
        except Exception as e:
            self._record_failure(outcome, f"cluster {cluster.name}", "listing nodes", e)
            return outcome

        for node in nodes:
            outcome.follow_ups.append((self._collect_node, (cluster, node.node, deadline)))
        return outcome

    def _collect_node(self, cluster: ClusterInfo, node: str, deadline: Deadline) -> _StepOutcome:
        outcome = _StepOutcome()
        path = f"cluster {cluster.name}/node {node}"

        deadline.check()
        try:
            self.collect_node_metrics(cluster.id, node, timeout=deadline.remaining())
            outcome.written += 1
        except Exception as e:
            self._record_failure(outcome, path, "collecting node metrics", e)

        for resource_type, list_guests, collect in (
                ('vm', self.source.list_vms, self.collect_vm_metrics),
                ('container', self.source.list_containers, self.collect_container_metrics)):
            deadline.check()
            try:
                guests = list_guests(cluster.id, node, timeout=deadline.remaining())
            except Exception as e:
                self._record_failure(outcome, path, f"listing {resource_type}s", e)
                continue
            for guest in guests:
                outcome.follow_ups.append(
                    (self._collect_guest, (collect, cluster, node, resource_type, guest.vmid, guest.name, deadline)))

        return outcome

    def _collect_guest(self, collect: Callable, cluster: ClusterInfo, node: str, resource_type: str,
                       vmid: int, name: str, deadline: Deadline) -> _StepOutcome:
        outcome = _StepOutcome()
        deadline.check()
        try:
            collect(cluster.id, node, vmid, name, timeout=deadline.remaining())
            outcome.written += 1
        except Exception as e:
            self._record_failure(outcome, f"cluster {cluster.name}/node {node}/{resource_type} {name} ({vmid})",
                                 "collecting metrics", e)
        return outcome

    @staticmethod
    def _record_failure(outcome: _StepOutcome, path: str, action: str, error: Exception) -> None:
        message = f"{path}: error {action}: {error}"
        logger.error(message)
        outcome.errors.append(message)

    def collect_node_metrics(self, cluster_id: int, node: str,
                             timeout: Optional[float] = None) -> MetricRecord:
        """Fetch a node's status and write its record."""
        status = self.source.get_node_status(cluster_id, node, timeout=timeout)
        record = build_node_record(cluster_id, node, status)
        self.store.append(record)
        logger.debug(f"Saved metrics for node {node}")
        return record

    def collect_vm_metrics(self, cluster_id: int, node: str, vmid: int, name: str,
                           timeout: Optional[float] = None) -> MetricRecord:
        """Fetch a VM's status and write its record."""
        status = self.source.get_vm_status(cluster_id, node, vmid, timeout=timeout)
        record = build_guest_record(cluster_id, node, 'vm', vmid, name, status)
        self.store.append(record)
        logger.debug(f"Saved {'minimal ' if record.is_minimal else ''}metrics for VM {name} ({vmid})")
        return record

    def collect_container_metrics(self, cluster_id: int, node: str, vmid: int, name: str,
                                  timeout: Optional[float] = None) -> MetricRecord:
        """Fetch a container's status and write its record."""
        status = self.source.get_container_status(cluster_id, node, vmid, timeout=timeout)
        record = build_guest_record(cluster_id, node, 'container', vmid, name, status)
        self.store.append(record)
        logger.debug(f"Saved {'minimal ' if record.is_minimal else ''}metrics for container {name} ({vmid})")
        return record
