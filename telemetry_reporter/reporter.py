"""Event reporter: turns instrumentation events into buffered store writes."""
from numbers import Real
from typing import Any, Dict, List, Mapping, Optional, Sequence
import logging
import threading
import time

from telemetry_reporter.buffer import WriteBuffer
from telemetry_reporter.cache import SeriesResolutionCache
from telemetry_reporter.definitions import MetricDefinition
from telemetry_reporter.events import EventBus, EventName, default_bus
from telemetry_reporter.units import convert_unit, format_unit

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_INTERVAL = 10_000
DEFAULT_PREFIX = "telemetry"


def build_metric_name(prefix: str, definition: MetricDefinition) -> str:
    """Store-side metric name: prefix plus the dot-joined definition name."""
    return f"{prefix}.{'.'.join(definition.name)}"


class FlushScheduler:
    """
    Drains the write buffer into the store, on a timer and on demand.

    The timer re-arms itself after each scheduled flush finishes, so a slow
    store never causes overlapping flushes. Drains are serialized by a lock
    that only flushers take; producers never touch it.
    """

    def __init__(self, buffer: WriteBuffer, store, flush_interval: int, sinks=None):
        self.buffer = buffer
        self.store = store
        self.flush_interval = flush_interval
        self.sinks = sinks or []

        self._drain_lock = threading.Lock()
        self._timer_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._stopped = True

    def start(self):
        self._stopped = False
        if self.flush_interval > 0:
            self._schedule()

    def _schedule(self):
        with self._timer_lock:
            if self._stopped:
                return
            self._timer = threading.Timer(self.flush_interval / 1000, self._run)
            self._timer.daemon = True
            self._timer.start()

    def _run(self):
        try:
            self.flush()
        except Exception as e:
            logger.error(f"Scheduled flush failed: {e}", exc_info=True)
        finally:
            self._schedule()

    def flush(self) -> int:
        """
        Drain the buffer and write it as one batch.

        Returns:
            Number of points written (0 when the buffer was empty or the
            store write failed and the batch was dropped)
        """
        with self._drain_lock:
            self._set_buffered_points()
            entries = self.buffer.drain()
            self._set_buffered_points()
            if not entries:
                return 0

            batch = [entry.to_batch_item() for entry in entries]
            started = time.perf_counter()

            try:
                self.store.write_batch_resolved(batch)
            except Exception as e:
                logger.error(f"Failed to write batch of {len(batch)} points, dropping it: {e}")
                for sink in self.sinks:
                    sink.record_flush_error()
                return 0

            duration = time.perf_counter() - started
            for sink in self.sinks:
                sink.record_flush(len(batch), duration)

            logger.debug(f"Flushed {len(batch)} points in {duration:.3f}s")
            return len(batch)

    def _set_buffered_points(self):
        count = len(self.buffer)
        for sink in self.sinks:
            sink.set_buffered_points(count)

    def stop(self):
        """Cancel the timer. Does not flush."""
        with self._timer_lock:
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class Reporter:
    """
    Writes metric definitions' events into a time-series store.

    One bus handler is attached per distinct event name. The handler runs
    in the emitting thread; its only shared state is the resolution cache
    and the write buffer, neither of which locks on insert. A FlushScheduler
    batches buffered points to the store.
    """

    def __init__(
        self,
        store,
        metrics: Sequence[MetricDefinition] = (),
        flush_interval: int = DEFAULT_FLUSH_INTERVAL,
        prefix: str = DEFAULT_PREFIX,
        bus: Optional[EventBus] = None,
        self_metrics=None,
        otel_self_metrics=None
    ):
        if flush_interval < 0:
            raise ValueError(f"flush_interval must be >= 0, got {flush_interval}")

        self.store = store
        self.metrics: List[MetricDefinition] = list(metrics)
        self.flush_interval = flush_interval
        self.prefix = prefix
        self.bus = bus if bus is not None else default_bus
        self.self_metrics = self_metrics
        self.otel_self_metrics = otel_self_metrics

        self.cache: Optional[SeriesResolutionCache] = None
        self.buffer: Optional[WriteBuffer] = None
        self.scheduler: Optional[FlushScheduler] = None
        self.handler_ids: List[Any] = []
        self.running = False
        self.start_time: Optional[float] = None

    @classmethod
    def from_config(cls, config, store, metrics: Sequence[MetricDefinition] = (), **kwargs) -> "Reporter":
        """Build a reporter from a loaded Config plus extra definitions."""
        return cls(
            store,
            metrics=list(metrics) + config.build_definitions(),
            flush_interval=config.reporter.flush_interval_ms,
            prefix=config.reporter.prefix,
            **kwargs
        )

    @property
    def sinks(self) -> list:
        return [s for s in (self.self_metrics, self.otel_self_metrics) if s is not None]

    def handler_id(self, event_name: EventName):
        return ("telemetry_reporter", self.prefix, event_name)

    def start(self) -> "Reporter":
        """Register metrics with the store, attach handlers and start flushing."""
        if self.running:
            return self

        self.cache = SeriesResolutionCache(self.store, on_miss=self._record_cache_miss)
        self.buffer = WriteBuffer()
        self.scheduler = FlushScheduler(self.buffer, self.store, self.flush_interval, self.sinks)

        grouped: Dict[EventName, List[MetricDefinition]] = {}
        for definition in self.metrics:
            grouped.setdefault(definition.event_name, []).append(definition)

        try:
            self._register_metrics()

            for event_name, event_metrics in grouped.items():
                handler_id = self.handler_id(event_name)
                self.bus.attach(
                    handler_id,
                    event_name,
                    self.handle_event,
                    {"metrics": tuple(event_metrics), "cache": self.cache, "buffer": self.buffer}
                )
                self.handler_ids.append(handler_id)
        except Exception:
            # Leave the bus as it was before start()
            for handler_id in self.handler_ids:
                self.bus.detach(handler_id)
            self.handler_ids = []
            self.cache = None
            self.buffer = None
            self.scheduler = None
            raise

        self.scheduler.start()
        self.running = True
        self.start_time = time.time()

        logger.info(
            f"Reporter started: {len(self.metrics)} metrics on {len(grouped)} events, "
            f"prefix '{self.prefix}', flush interval {self.flush_interval}ms"
        )
        return self

    def flush(self) -> int:
        """Synchronously drain the buffer into the store."""
        scheduler = self.scheduler
        if scheduler is None:
            return 0
        return scheduler.flush()

    def stop(self):
        """Detach handlers, flush what is left and release the buffers."""
        if not self.running:
            return

        for handler_id in self.handler_ids:
            self.bus.detach(handler_id)
        self.handler_ids = []

        self.scheduler.stop()
        written = self.scheduler.flush()

        self.running = False
        self.cache = None
        self.buffer = None
        self.scheduler = None

        logger.info(f"Reporter stopped, final flush wrote {written} points")

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()

    def handle_event(
        self,
        event_name: EventName,
        measurements: Mapping[str, Any],
        metadata: Mapping[str, Any],
        config: Mapping[str, Any]
    ):
        """Bus callback. Runs in the emitting thread and never raises."""
        cache = config["cache"]
        buffer = config["buffer"]

        for definition in config["metrics"]:
            try:
                self._record(definition, measurements, metadata, cache, buffer)
            except Exception as e:
                metric_name = build_metric_name(self.prefix, definition)
                logger.warning(f"Dropped {metric_name} for event {'.'.join(event_name)}: {e}")
                for sink in self.sinks:
                    sink.record_handler_error(metric_name)

    def _record(self, definition, measurements, metadata, cache, buffer):
        if not definition.keeps(metadata):
            return

        value = definition.extract_value(measurements, metadata)
        if value is None:
            return
        if isinstance(value, bool) or not isinstance(value, Real):
            logger.debug(f"Skipping non-numeric value {value!r} for {definition.full_name}")
            return

        value = convert_unit(value, definition.unit)
        labels = definition.extract_labels(metadata)
        metric_name = build_metric_name(self.prefix, definition)
        series_id = cache.resolve(metric_name, labels)

        buffer.record(series_id, int(time.time()), value)

    def _register_metrics(self):
        for definition in self.metrics:
            metric_name = build_metric_name(self.prefix, definition)
            try:
                self.store.register_metric(
                    metric_name,
                    definition.metric_type,
                    unit=format_unit(definition.unit),
                    description=definition.description
                )
            except Exception as e:
                logger.error(f"Failed to register metric {metric_name}: {e}")
                raise

    def _record_cache_miss(self, metric_name: str):
        for sink in self.sinks:
            sink.record_cache_miss(metric_name)
            sink.set_cached_series(len(self.cache) if self.cache is not None else 0)

    def status(self) -> Dict[str, Any]:
        """Snapshot for the control API."""
        return {
            "running": self.running,
            "uptime_seconds": time.time() - self.start_time if self.start_time else 0,
            "prefix": self.prefix,
            "flush_interval_ms": self.flush_interval,
            "metrics": len(self.metrics),
            "events": len(self.handler_ids),
            "cached_series": len(self.cache) if self.cache is not None else 0,
            "buffered_points": len(self.buffer) if self.buffer is not None else 0,
        }
