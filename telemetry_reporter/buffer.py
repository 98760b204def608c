"""Insert-only buffer of points waiting to be flushed."""
from typing import Dict, List, Tuple
import itertools

from telemetry_reporter.series import BufferEntry


class WriteBuffer:
    """
    Concurrent accumulator of (series_id, timestamp, value) points.

    Every insert gets its own key (series id plus a process-unique token)
    so writers sharing a series and timestamp never overwrite each other.
    ``drain`` pops each key it captured, which hands every entry to exactly
    one drain; callers must not run two drains at once.
    """

    def __init__(self):
        self._entries: Dict[Tuple[int, int], Tuple[int, float]] = {}
        self._tokens = itertools.count()

    def record(self, series_id: int, timestamp: int, value: float):
        """Add a point. Safe to call from any thread without locking."""
        self._entries[(series_id, next(self._tokens))] = (timestamp, value)

    def drain(self) -> List[BufferEntry]:
        """Remove and return everything currently buffered."""
        keys = list(self._entries)
        entries = []

        for key in keys:
            timestamp, value = self._entries.pop(key)
            entries.append(BufferEntry(key[0], timestamp, value))

        return entries

    def __len__(self) -> int:
        return len(self._entries)
