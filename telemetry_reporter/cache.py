"""Series id cache fronting the store's resolve operation."""
from typing import Callable, Dict, Mapping, Optional, Tuple
import logging

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, Tuple[Tuple[str, str], ...]]


class SeriesResolutionCache:
    """
    Maps (metric name, labels) to the store's series id.

    Reads and inserts go straight to a dict, so producers on different
    threads never wait on each other. Two threads missing the same key may
    both ask the store; resolution is idempotent so the second insert just
    overwrites the first with the same id.
    """

    def __init__(self, store, on_miss: Optional[Callable[[str], None]] = None):
        self.store = store
        self.on_miss = on_miss
        self._entries: Dict[CacheKey, int] = {}

    @staticmethod
    def cache_key(metric_name: str, labels: Mapping[str, str]) -> CacheKey:
        return (metric_name, tuple(sorted(labels.items())))

    def resolve(self, metric_name: str, labels: Mapping[str, str]) -> int:
        """Return the series id, asking the store on a miss."""
        key = self.cache_key(metric_name, labels)

        series_id = self._entries.get(key)
        if series_id is not None:
            return series_id

        series_id = self.store.resolve_series(metric_name, dict(labels))
        self._entries[key] = series_id
        logger.debug(f"Resolved series {metric_name} {dict(labels)} -> {series_id}")

        if self.on_miss:
            self.on_miss(metric_name)

        return series_id

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def clear(self):
        self._entries.clear()
