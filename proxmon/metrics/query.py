"""
Metric Query Module

Filtering, latest-per-resource selection, historical projection and
time-bucketed aggregation over metric records, plus the parameter parsing
used by the query surface.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Iterable, List, Mapping, Optional, Tuple
import heapq
import json

from proxmon.errors import QueryValidationError
from proxmon.metrics.record import MetricRecord, RESOURCE_TYPES, utcnow

DEFAULT_LIMIT = 100
DEFAULT_DURATION_HOURS = 24
DEFAULT_INTERVAL = 'hour'

# strftime formats of the aggregation time buckets (UTC)
INTERVALS = {
    'hour': '%Y-%m-%d %H:00',
    'day': '%Y-%m-%d',
    'week': '%Y-%U',
}

# Fields projected for each metric family in historical queries
HISTORICAL_FIELDS = {
    'cpu': ('usage', 'cores'),
    'memory': ('total', 'used', 'free', 'usage'),
    'disk': ('total', 'used', 'free', 'usage'),
    'network': ('in', 'out'),
}

FILTER_FIELDS = ('cluster_id', 'node', 'vmid', 'type', 'name')


def _parse_int(params: Mapping[str, Any], key: str, default: Optional[int] = None,
               minimum: Optional[int] = None) -> Optional[int]:
    value = params.get(key)
    if value is None or value == '':
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise QueryValidationError(f"{key} must be an integer, got {value!r}")
    if minimum is not None and number < minimum:
        raise QueryValidationError(f"{key} must be at least {minimum}")
    return number


@dataclass(frozen=True)
class MetricFilter:
    """Conjunctive filter; None fields match everything."""
    cluster_id: Optional[int] = None
    node: Optional[str] = None
    vmid: Optional[int] = None
    type: Optional[str] = None
    name: Optional[str] = None

    def __post_init__(self):
        if self.type is not None and self.type not in RESOURCE_TYPES:
            raise QueryValidationError(
                f"type must be one of {', '.join(RESOURCE_TYPES)}, got {self.type!r}")

    def matches(self, record: MetricRecord) -> bool:
        return ((self.cluster_id is None or record.cluster_id == self.cluster_id) and
                (self.node is None or record.node == self.node) and
                (self.vmid is None or record.vmid == self.vmid) and
                (self.type is None or record.type == self.type) and
                (self.name is None or record.name == self.name))

    @classmethod
    def from_params(cls, params: Mapping[str, Any], fields: Tuple[str, ...] = FILTER_FIELDS) -> 'MetricFilter':
        """Build a filter from request-style string parameters, keeping only `fields`."""
        values = {}
        for key in fields:
            if key in ('cluster_id', 'vmid'):
                values[key] = _parse_int(params, key)
            else:
                values[key] = params.get(key) or None
        return cls(**values)


def window_start(duration_hours: float, now: Optional[datetime] = None) -> datetime:
    if duration_hours <= 0:
        raise QueryValidationError("duration must be a positive number of hours")
    return (now or utcnow()) - timedelta(hours=duration_hours)


def time_bucket(timestamp: datetime, interval: str = DEFAULT_INTERVAL) -> str:
    """Truncate a timestamp to its hour, day or week bucket label."""
    try:
        fmt = INTERVALS[interval]
    except KeyError:
        raise QueryValidationError(f"interval must be one of {', '.join(INTERVALS)}, got {interval!r}")
    return timestamp.astimezone(timezone.utc).strftime(fmt)


def _key_order(key: tuple) -> tuple:
    cluster_id, node, vmid, rtype, name = key
    return (cluster_id, node, vmid is not None, vmid or 0, rtype, name)


def _recency(record: MetricRecord) -> tuple:
    """Timestamp first; status and payload settle ties whatever the scan order."""
    return (record.timestamp, record.status, json.dumps(record.metrics.to_dict(), sort_keys=True))


def newest_first(records: Iterable[MetricRecord], limit: int = DEFAULT_LIMIT) -> List[MetricRecord]:
    if limit < 1:
        raise QueryValidationError("limit must be at least 1")
    return heapq.nlargest(limit, records, key=lambda r: r.timestamp)


def latest_per_resource(records: Iterable[MetricRecord]) -> List[MetricRecord]:
    """Keep the newest record of each resource, ordered by (type, name)."""
    latest: Dict[tuple, MetricRecord] = {}
    for record in records:
        current = latest.get(record.resource_key)
        if current is None or _recency(record) > _recency(current):
            latest[record.resource_key] = record
    return sorted(latest.values(), key=lambda r: (r.type, r.name, _key_order(r.resource_key)))


def project_historical(records: Iterable[MetricRecord], metric: str) -> List[Dict[str, Any]]:
    """Project records onto one metric family, oldest first; missing values become 0."""
    projected = []
    for record in sorted(records, key=lambda r: r.timestamp):
        payload = record.metrics.to_dict()
        row = {'timestamp': record.timestamp.isoformat(), 'status': record.status}
        if metric in HISTORICAL_FIELDS:
            family = payload.get(metric) or {}
            for name in HISTORICAL_FIELDS[metric]:
                row[name] = family.get(name) or 0
        else:
            row.setdefault(metric, payload.get(metric) or 0)
        projected.append(row)
    return projected


@dataclass
class AggregateBucket:
    time_bucket: str
    cluster_id: int
    node: str
    vmid: Optional[int]
    type: str
    name: str
    avg_cpu_usage: Optional[float]
    avg_memory_usage: Optional[float]
    avg_disk_usage: Optional[float]
    avg_network_in: Optional[float]
    avg_network_out: Optional[float]
    last_status: Optional[str]
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class _Accumulator:
    FIELDS = ('cpu', 'memory', 'disk', 'network_in', 'network_out')

    def __init__(self):
        self.sums = {f: 0.0 for f in self.FIELDS}
        self.counts = {f: 0 for f in self.FIELDS}
        self.count = 0
        self.last_key: Optional[tuple] = None
        self.last_status: Optional[str] = None

    def _add(self, name: str, value: Optional[float]) -> None:
        if value is not None:
            self.sums[name] += value
            self.counts[name] += 1

    def add(self, record: MetricRecord) -> None:
        self.count += 1
        key = _recency(record)
        if self.last_key is None or key > self.last_key:
            self.last_key = key
            self.last_status = record.status
        if record.is_minimal:
            return
        metrics = record.metrics
        self._add('cpu', metrics.cpu.usage)
        self._add('memory', metrics.memory.usage)
        self._add('disk', metrics.disk.usage)
        if metrics.network is not None:
            self._add('network_in', metrics.network.rx)
            self._add('network_out', metrics.network.tx)

    def mean(self, name: str) -> Optional[float]:
        if not self.counts[name]:
            return None
        return self.sums[name] / self.counts[name]


def aggregate_records(records: Iterable[MetricRecord], interval: str = DEFAULT_INTERVAL) -> List[AggregateBucket]:
    """
    Group records by (time bucket, resource) and average their usage figures.

    Averages only count records that carry the value; status-only records
    still count towards `count` and `last_status`.
    """
    if interval not in INTERVALS:
        raise QueryValidationError(f"interval must be one of {', '.join(INTERVALS)}, got {interval!r}")

    groups: Dict[tuple, _Accumulator] = {}
    for record in records:
        key = (time_bucket(record.timestamp, interval),) + record.resource_key
        groups.setdefault(key, _Accumulator()).add(record)

    buckets = []
    for key in sorted(groups, key=lambda k: (k[0], _key_order(k[1:]))):
        acc = groups[key]
        bucket_label, cluster_id, node, vmid, rtype, name = key
        buckets.append(AggregateBucket(
            time_bucket=bucket_label,
            cluster_id=cluster_id,
            node=node,
            vmid=vmid,
            type=rtype,
            name=name,
            avg_cpu_usage=acc.mean('cpu'),
            avg_memory_usage=acc.mean('memory'),
            avg_disk_usage=acc.mean('disk'),
            avg_network_in=acc.mean('network_in'),
            avg_network_out=acc.mean('network_out'),
            last_status=acc.last_status,
            count=acc.count
        ))
    return buckets


class MetricQueryService:
    """
    Query surface over a MetricStore.

    Accepts request-style parameter mappings (string values allowed) and
    returns JSON-ready lists of dicts.
    """

    def __init__(self, store):
        self.store = store

    def raw(self, params: Mapping[str, Any]) -> List[Dict[str, Any]]:
        metric_filter = MetricFilter.from_params(params)
        limit = _parse_int(params, 'limit', DEFAULT_LIMIT, minimum=1)
        return [r.to_dict() for r in self.store.query(metric_filter, limit)]

    def latest(self, params: Mapping[str, Any]) -> List[Dict[str, Any]]:
        metric_filter = MetricFilter.from_params(params, fields=('cluster_id', 'type'))
        return [r.to_dict() for r in self.store.latest_per_resource(metric_filter)]

    def aggregated(self, params: Mapping[str, Any]) -> List[Dict[str, Any]]:
        metric_filter = MetricFilter.from_params(params)
        interval = params.get('interval') or DEFAULT_INTERVAL
        duration = _parse_int(params, 'duration', DEFAULT_DURATION_HOURS, minimum=1)
        return [b.to_dict() for b in self.store.aggregate(metric_filter, interval, duration)]

    def historical(self, params: Mapping[str, Any]) -> List[Dict[str, Any]]:
        metric = params.get('metric')
        if not metric:
            raise QueryValidationError("Metric type is required (cpu, memory, disk, network)")
        metric_filter = MetricFilter.from_params(params)
        duration = _parse_int(params, 'duration', DEFAULT_DURATION_HOURS, minimum=1)
        return self.store.historical(metric_filter, metric, duration)
