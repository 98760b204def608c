"""Time-series storage backend interface and an in-memory implementation."""
from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional, Sequence, Tuple
import itertools
import logging
import threading
import time

from telemetry_reporter.series import MetricMetadata, SeriesResult
from telemetry_reporter.units import native_time

logger = logging.getLogger(__name__)

BatchItem = Tuple[int, float, int]


class Store(ABC):
    """Operations the reporter and history query need from a backend."""

    @abstractmethod
    def resolve_series(self, metric_name: str, labels: Mapping[str, str]) -> int:
        """Return the id for (metric_name, labels), creating the series if needed.

        Must be idempotent: the same name and labels always give the same id.
        """

    @abstractmethod
    def write_batch_resolved(self, batch: Sequence[BatchItem]):
        """Persist (series_id, value, timestamp_seconds) triples."""

    @abstractmethod
    def register_metric(
        self,
        metric_name: str,
        metric_type: str,
        unit: Optional[str] = None,
        description: Optional[str] = None
    ):
        """Record type, unit and description for a metric name."""

    @abstractmethod
    def query_multi(
        self,
        metric_name: str,
        label_filter: Mapping[str, str],
        from_: Optional[int] = None,
        to: Optional[int] = None
    ) -> List[SeriesResult]:
        """Return every series of metric_name matching label_filter within [from_, to]."""


class InMemoryStore(Store):
    """
    Thread-safe in-memory store.

    Emits ``store.write.batch`` and ``store.query.multi`` events on ``bus``
    when one is given, so the store can be monitored through the reporter.
    """

    def __init__(self, bus=None):
        self.bus = bus
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._series_ids: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], int] = {}
        self._series: Dict[int, Tuple[str, Dict[str, str]]] = {}
        self._points: Dict[int, List[Tuple[int, float]]] = {}
        self._metadata: Dict[str, MetricMetadata] = {}

    def resolve_series(self, metric_name: str, labels: Mapping[str, str]) -> int:
        key = (metric_name, tuple(sorted(labels.items())))

        with self._lock:
            series_id = self._series_ids.get(key)
            if series_id is None:
                series_id = next(self._ids)
                self._series_ids[key] = series_id
                self._series[series_id] = (metric_name, dict(labels))
                self._points[series_id] = []

        return series_id

    def write_batch_resolved(self, batch: Sequence[BatchItem]):
        touched = set()

        with self._lock:
            for series_id, value, timestamp in batch:
                if series_id not in self._points:
                    raise KeyError(f"Unknown series id {series_id}")
                self._points[series_id].append((int(timestamp), float(value)))
                touched.add(series_id)

        self._emit(
            "store.write.batch",
            {"point_count": len(batch), "series_count": len(touched)}
        )

    def write(self, metric_name: str, labels: Mapping[str, str], value: float, timestamp: Optional[int] = None):
        """Write a single point, resolving its series first."""
        series_id = self.resolve_series(metric_name, labels)
        if timestamp is None:
            timestamp = int(time.time())
        self.write_batch_resolved([(series_id, value, timestamp)])

    def register_metric(
        self,
        metric_name: str,
        metric_type: str,
        unit: Optional[str] = None,
        description: Optional[str] = None
    ):
        with self._lock:
            self._metadata[metric_name] = MetricMetadata(metric_name, metric_type, unit, description)

    def query_multi(
        self,
        metric_name: str,
        label_filter: Mapping[str, str],
        from_: Optional[int] = None,
        to: Optional[int] = None
    ) -> List[SeriesResult]:
        started = native_time()
        results = []

        with self._lock:
            for series_id, (name, labels) in self._series.items():
                if name != metric_name:
                    continue
                if any(labels.get(k) != v for k, v in label_filter.items()):
                    continue

                points = [
                    (ts, value) for ts, value in self._points[series_id]
                    if (from_ is None or ts >= from_) and (to is None or ts <= to)
                ]
                if points:
                    results.append(SeriesResult(dict(labels), sorted(points)))

        self._emit(
            "store.query.multi",
            {
                "duration": native_time() - started,
                "point_count": sum(len(r.points) for r in results),
                "series_count": len(results),
            }
        )
        return results

    def query(self, metric_name: str, label_filter: Optional[Mapping[str, str]] = None) -> List[Tuple[int, float]]:
        """All points of matching series, merged and sorted by time."""
        points = []
        for result in self.query_multi(metric_name, label_filter or {}):
            points.extend(result.points)
        return sorted(points)

    def list_metrics(self) -> List[str]:
        with self._lock:
            names = {name for name, _ in self._series.values()}
            names.update(self._metadata)
        return sorted(names)

    def list_series(self, metric_name: str) -> List[SeriesResult]:
        """Every series of a metric with its labels, points included."""
        with self._lock:
            return [
                SeriesResult(dict(labels), list(self._points[series_id]))
                for series_id, (name, labels) in self._series.items()
                if name == metric_name
            ]

    def get_metadata(self, metric_name: str) -> Optional[MetricMetadata]:
        with self._lock:
            return self._metadata.get(metric_name)

    def point_count(self) -> int:
        with self._lock:
            return sum(len(points) for points in self._points.values())

    def _emit(self, event_name: str, measurements: Dict[str, int]):
        if self.bus is not None:
            self.bus.execute(event_name, measurements, {"store": "memory"})
