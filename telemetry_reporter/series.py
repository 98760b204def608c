"""Data structures for buffered points, stored series and history output."""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class BufferEntry:
    """A pending point waiting for the next flush."""
    series_id: int
    timestamp: int
    value: float

    def to_batch_item(self) -> Tuple[int, float, int]:
        """Project to the (series_id, value, timestamp) shape the store writes."""
        return (self.series_id, self.value, self.timestamp)


@dataclass
class SeriesResult:
    """One series returned by a multi-series query."""
    labels: Dict[str, str]
    points: List[Tuple[int, float]] = field(default_factory=list)

    def label_key(self) -> str:
        """Generate a stable key from sorted labels."""
        items = sorted(self.labels.items())
        return ",".join(f"{k}={v}" for k, v in items)


@dataclass
class MetricMetadata:
    """Metadata registered alongside a metric name."""
    name: str
    type: str
    unit: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class HistoryPoint:
    """A single reconstructed history point.

    ``label`` is None when the definition declares no tags (or all tag
    values are empty). ``time`` is in microseconds.
    """
    label: Optional[str]
    time: int
    measurement: float
