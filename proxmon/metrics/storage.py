"""
Metric Storage Module

Append-only persistence of metric records. Records are never updated; they
leave the store only through purge_older_than(), which the retention
sweeper calls in the background.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Iterator, List, Optional, Tuple
import glob
import json
import logging
import os
import threading

from proxmon.errors import QueryValidationError, RecordValidationError, StoreError
from proxmon.metrics.query import (
    DEFAULT_DURATION_HOURS,
    DEFAULT_INTERVAL,
    DEFAULT_LIMIT,
    AggregateBucket,
    MetricFilter,
    aggregate_records,
    latest_per_resource,
    newest_first,
    project_historical,
    window_start,
)
from proxmon.metrics.record import MetricRecord

logger = logging.getLogger(__name__)


class MetricStore(ABC):
    """
    Base class for metric stores.

    Subclasses provide append/scan/purge; the query shapes are built on
    top of scan().
    """

    @abstractmethod
    def append(self, record: MetricRecord) -> None:
        """Persist one record."""
        pass

    @abstractmethod
    def scan(self, metric_filter: Optional[MetricFilter] = None,
             since: Optional[datetime] = None) -> Iterator[MetricRecord]:
        """Iterate records matching the filter with timestamp >= since, in no particular order."""
        pass

    @abstractmethod
    def purge_older_than(self, cutoff: datetime) -> int:
        """Delete records with timestamp < cutoff. Returns the number deleted."""
        pass

    def store_batch(self, records: List[MetricRecord]) -> None:
        for record in records:
            self.append(record)

    def query(self, metric_filter: Optional[MetricFilter] = None,
              limit: int = DEFAULT_LIMIT) -> List[MetricRecord]:
        """Matching records, newest first, at most `limit`."""
        return newest_first(self.scan(metric_filter), limit)

    def latest_per_resource(self, metric_filter: Optional[MetricFilter] = None) -> List[MetricRecord]:
        return latest_per_resource(self.scan(metric_filter))

    def historical(self, metric_filter: Optional[MetricFilter], metric: str,
                   duration_hours: float = DEFAULT_DURATION_HOURS,
                   now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        if not metric:
            raise QueryValidationError("Metric type is required (cpu, memory, disk, network)")
        since = window_start(duration_hours, now)
        return project_historical(self.scan(metric_filter, since), metric)

    def aggregate(self, metric_filter: Optional[MetricFilter] = None,
                  interval: str = DEFAULT_INTERVAL,
                  duration_hours: float = DEFAULT_DURATION_HOURS,
                  now: Optional[datetime] = None) -> List[AggregateBucket]:
        since = window_start(duration_hours, now)
        return aggregate_records(self.scan(metric_filter, since), interval)

    @staticmethod
    def _selected(record: MetricRecord, metric_filter: Optional[MetricFilter],
                  since: Optional[datetime]) -> bool:
        if since is not None and record.timestamp < since:
            return False
        return metric_filter is None or metric_filter.matches(record)


class InMemoryMetricStore(MetricStore):
    """Process-local store. The lock only guards the list itself."""

    def __init__(self):
        self._records: List[MetricRecord] = []
        self._lock = threading.Lock()

    def append(self, record: MetricRecord) -> None:
        with self._lock:
            self._records.append(record)

    def scan(self, metric_filter: Optional[MetricFilter] = None,
             since: Optional[datetime] = None) -> Iterator[MetricRecord]:
        with self._lock:
            snapshot = list(self._records)
        return (r for r in snapshot if self._selected(r, metric_filter, since))

    def purge_older_than(self, cutoff: datetime) -> int:
        with self._lock:
            kept = [r for r in self._records if r.timestamp >= cutoff]
            removed = len(self._records) - len(kept)
            self._records = kept
        return removed

    def __len__(self) -> int:
        return len(self._records)


class JsonMetricStore(MetricStore):
    """
    Stores metrics as JSON Lines files organized by cluster and hour.

    Directory structure: <base_dir>/<cluster_id>/<YYYY>/<MM>/<DD>/<HH>.jsonl
    (UTC). Reads skip whole hour files outside the requested window and the
    retention purge deletes expired hour files outright.
    """

    FILE_PATTERN = os.path.join('*', '[0-9]' * 4, '[0-9]' * 2, '[0-9]' * 2, '[0-9]' * 2 + '.jsonl')

    def __init__(self, base_dir: str = "data/metrics"):
        self.base_dir = base_dir
        self._lock = threading.Lock()
        os.makedirs(base_dir, exist_ok=True)

    def _get_file_path(self, cluster_id: int, timestamp: datetime) -> str:
        """Generate file path based on cluster and hour."""
        timestamp = timestamp.astimezone(timezone.utc)
        date_dir = timestamp.strftime("%Y/%m/%d")
        return os.path.join(self.base_dir, str(cluster_id), date_dir, timestamp.strftime("%H") + ".jsonl")

    def _hour_files(self, cluster_id: Optional[int] = None) -> Iterator[Tuple[datetime, str]]:
        """Yield (hour start, path) for every hour file, optionally for one cluster."""
        for file_path in glob.glob(os.path.join(self.base_dir, self.FILE_PATTERN)):
            parts = os.path.relpath(file_path, self.base_dir).split(os.sep)
            cluster_dir, year, month, day, hour_file = parts
            if cluster_id is not None and cluster_dir != str(cluster_id):
                continue
            try:
                hour_start = datetime(int(year), int(month), int(day), int(hour_file[:2]), tzinfo=timezone.utc)
            except ValueError:
                continue
            yield hour_start, file_path

    def append(self, record: MetricRecord) -> None:
        file_path = self._get_file_path(record.cluster_id, record.timestamp)
        line = json.dumps(record.to_dict()) + "\n"
        try:
            with self._lock:
                os.makedirs(os.path.dirname(file_path), exist_ok=True)
                with open(file_path, 'a', encoding='utf-8') as f:
                    f.write(line)
        except OSError as e:
            raise StoreError(f"Failed to write metric to {file_path}: {e}") from e

    def _read_file(self, file_path: str) -> List[MetricRecord]:
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                lines = f.readlines()
        except FileNotFoundError:
            # Removed by a concurrent purge
            return []
        except OSError as e:
            raise StoreError(f"Failed to read {file_path}: {e}") from e

        records = []
        for line_no, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                records.append(MetricRecord.from_dict(json.loads(line)))
            except (json.JSONDecodeError, RecordValidationError) as e:
                logger.warning(f"Skipping corrupt metric at {file_path}:{line_no}: {e}")
        return records

    def scan(self, metric_filter: Optional[MetricFilter] = None,
             since: Optional[datetime] = None) -> Iterator[MetricRecord]:
        cluster_id = metric_filter.cluster_id if metric_filter else None
        for hour_start, file_path in sorted(self._hour_files(cluster_id)):
            if since is not None and hour_start + timedelta(hours=1) <= since:
                continue
            for record in self._read_file(file_path):
                if self._selected(record, metric_filter, since):
                    yield record

    def purge_older_than(self, cutoff: datetime) -> int:
        removed = 0
        for hour_start, file_path in list(self._hour_files()):
            if hour_start >= cutoff:
                continue
            try:
                if hour_start + timedelta(hours=1) <= cutoff:
                    removed += len(self._read_file(file_path))
                    with self._lock:
                        os.remove(file_path)
                else:
                    removed += self._rewrite_from(file_path, cutoff)
            except OSError as e:
                raise StoreError(f"Failed to purge {file_path}: {e}") from e
        self._remove_empty_dirs()
        return removed

    def _rewrite_from(self, file_path: str, cutoff: datetime) -> int:
        """Drop records older than cutoff from a partially expired hour file."""
        with self._lock:
            records = self._read_file(file_path)
            kept = [r for r in records if r.timestamp >= cutoff]
            tmp_path = file_path + ".tmp"
            with open(tmp_path, 'w', encoding='utf-8') as f:
                for record in kept:
                    f.write(json.dumps(record.to_dict()) + "\n")
            os.replace(tmp_path, file_path)
        return len(records) - len(kept)

    def _remove_empty_dirs(self) -> None:
        with self._lock:
            for dir_path, _dirs, _files in os.walk(self.base_dir, topdown=False):
                if dir_path == self.base_dir:
                    continue
                try:
                    os.rmdir(dir_path)
                except OSError:
                    # Not empty
                    pass
