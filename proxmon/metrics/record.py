"""
Metric Record Module

Data model for a single observation of one cluster resource (node, VM or
container) at one instant. Running resources carry full telemetry; anything
else carries its status only.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Union

from proxmon.errors import RecordValidationError

RESOURCE_TYPES = ('node', 'vm', 'container')
STATUS_RUNNING = 'running'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def usage_percent(used: Optional[float], total: Optional[float]) -> Optional[float]:
    """Return used/total as a percentage, or None when total is not positive."""
    if used is None or not total or total <= 0:
        return None
    return used / total * 100


def _drop_none(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


@dataclass(frozen=True)
class CpuStats:
    usage: float
    cores: int = 0


@dataclass(frozen=True)
class CapacityStats:
    """Memory or disk capacity in bytes."""
    total: int
    used: int
    free: int
    usage: Optional[float] = None

    @classmethod
    def derive(cls, total: int, used: int, free: Optional[int] = None) -> 'CapacityStats':
        if free is None:
            free = total - used
        return cls(total=total, used=used, free=free, usage=usage_percent(used, total))


@dataclass(frozen=True)
class NetworkStats:
    """Network throughput in bytes/s."""
    rx: float
    tx: float

    def to_dict(self) -> Dict[str, Any]:
        return {'in': self.rx, 'out': self.tx}


@dataclass(frozen=True)
class FullMetrics:
    """Telemetry of a running resource."""
    cpu: CpuStats
    memory: CapacityStats
    disk: CapacityStats
    network: Optional[NetworkStats] = None
    uptime: int = 0
    status: str = STATUS_RUNNING

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'cpu': _drop_none({'usage': self.cpu.usage, 'cores': self.cpu.cores}),
            'memory': _drop_none(asdict(self.memory)),
            'disk': _drop_none(asdict(self.disk)),
            'uptime': self.uptime,
            'status': self.status,
        }
        if self.network is not None:
            data['network'] = self.network.to_dict()
        return data


@dataclass(frozen=True)
class MinimalMetrics:
    """A non-running resource: status only, no numbers."""
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {'status': self.status}


Metrics = Union[FullMetrics, MinimalMetrics]


def metrics_from_dict(data: Dict[str, Any]) -> Metrics:
    if 'cpu' not in data:
        return MinimalMetrics(status=data.get('status', 'unknown'))

    network = None
    if 'network' in data:
        network = NetworkStats(rx=data['network'].get('in', 0), tx=data['network'].get('out', 0))

    return FullMetrics(
        cpu=CpuStats(**data['cpu']),
        memory=CapacityStats(**data['memory']),
        disk=CapacityStats(**data['disk']),
        network=network,
        uptime=data.get('uptime', 0),
        status=data.get('status', STATUS_RUNNING),
    )


@dataclass(frozen=True)
class MetricRecord:
    """One observation of one resource. Immutable once created."""
    cluster_id: int
    node: str
    type: str
    name: str
    metrics: Metrics
    vmid: Optional[int] = None
    timestamp: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if isinstance(self.cluster_id, bool) or not isinstance(self.cluster_id, int):
            raise RecordValidationError(f"cluster_id must be an integer, got {self.cluster_id!r}")
        if not self.node:
            raise RecordValidationError("node is required")
        if not self.name:
            raise RecordValidationError("name is required")
        if self.type not in RESOURCE_TYPES:
            raise RecordValidationError(
                f"type must be one of {', '.join(RESOURCE_TYPES)}, got {self.type!r}")
        if self.type == 'node' and self.vmid is not None:
            raise RecordValidationError("vmid must be absent for node records")
        if self.type != 'node' and self.vmid is None:
            raise RecordValidationError(f"vmid is required for {self.type} records")
        if not isinstance(self.metrics, (FullMetrics, MinimalMetrics)):
            raise RecordValidationError("metrics must be FullMetrics or MinimalMetrics")
        if self.timestamp.tzinfo is None:
            # Naive timestamps are taken as UTC
            object.__setattr__(self, 'timestamp', self.timestamp.replace(tzinfo=timezone.utc))

    @property
    def resource_key(self) -> tuple:
        return (self.cluster_id, self.node, self.vmid, self.type, self.name)

    @property
    def status(self) -> str:
        return self.metrics.status

    @property
    def is_minimal(self) -> bool:
        return isinstance(self.metrics, MinimalMetrics)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'cluster_id': self.cluster_id,
            'node': self.node,
            'type': self.type,
            'name': self.name,
            'metrics': self.metrics.to_dict(),
            'timestamp': self.timestamp.isoformat(),
        }
        if self.vmid is not None:
            data['vmid'] = self.vmid
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MetricRecord':
        try:
            return cls(
                cluster_id=data['cluster_id'],
                node=data['node'],
                type=data['type'],
                name=data['name'],
                vmid=data.get('vmid'),
                metrics=metrics_from_dict(data.get('metrics') or {}),
                timestamp=datetime.fromisoformat(data['timestamp']),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RecordValidationError(f"Invalid metric record: {e}") from e
