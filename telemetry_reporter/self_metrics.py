"""Self-monitoring metrics for the reporter (Prometheus and OpenTelemetry)."""
from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry, generate_latest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource

FLUSH_DURATION_BUCKETS = [0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]


class SelfMetrics:
    """Self-monitoring metrics exported through a Prometheus registry."""

    def __init__(self, registry=None, prefix=""):
        if registry is None:
            registry = CollectorRegistry()
        self.registry = registry

        self.flushes_total = Counter(
            f"{prefix}reporter_flushes_total",
            "Total number of non-empty buffer flushes",
            registry=registry
        )

        self.points_flushed_total = Counter(
            f"{prefix}reporter_points_flushed_total",
            "Total number of points written to the store",
            registry=registry
        )

        self.flush_errors_total = Counter(
            f"{prefix}reporter_flush_errors_total",
            "Total number of batches dropped because the store write failed",
            registry=registry
        )

        self.flush_duration_seconds = Histogram(
            f"{prefix}reporter_flush_duration_seconds",
            "Duration of each store batch write in seconds",
            buckets=FLUSH_DURATION_BUCKETS,
            registry=registry
        )

        self.handler_errors_total = Counter(
            f"{prefix}reporter_handler_errors_total",
            "Total number of event contributions dropped by a failing definition",
            ["metric_name"],
            registry=registry
        )

        self.cache_misses_total = Counter(
            f"{prefix}reporter_cache_misses_total",
            "Total number of series id lookups that went to the store",
            ["metric_name"],
            registry=registry
        )

        self.cached_series = Gauge(
            f"{prefix}reporter_cached_series",
            "Number of series ids held in the resolution cache",
            registry=registry
        )

        self.buffered_points = Gauge(
            f"{prefix}reporter_buffered_points",
            "Number of points waiting in the write buffer",
            registry=registry
        )

    def record_flush(self, point_count: int, duration: float):
        """Record a successful batch write."""
        self.flushes_total.inc()
        self.points_flushed_total.inc(point_count)
        self.flush_duration_seconds.observe(duration)

    def record_flush_error(self):
        self.flush_errors_total.inc()

    def record_handler_error(self, metric_name: str):
        self.handler_errors_total.labels(metric_name=metric_name).inc()

    def record_cache_miss(self, metric_name: str):
        self.cache_misses_total.labels(metric_name=metric_name).inc()

    def set_cached_series(self, count: int):
        self.cached_series.set(count)

    def set_buffered_points(self, count: int):
        self.buffered_points.set(count)

    def exposition(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)


class OTELSelfMetrics:
    """The same self-monitoring set recorded on an OpenTelemetry meter."""

    def __init__(self, meter, prefix=""):
        self.prefix = prefix
        self._cached_series = 0
        self._buffered_points = 0

        self.flushes_counter = meter.create_counter(
            name=f"{prefix}reporter_flushes_total",
            description="Total number of non-empty buffer flushes",
            unit="1"
        )

        self.points_flushed_counter = meter.create_counter(
            name=f"{prefix}reporter_points_flushed_total",
            description="Total number of points written to the store",
            unit="1"
        )

        self.flush_errors_counter = meter.create_counter(
            name=f"{prefix}reporter_flush_errors_total",
            description="Total number of batches dropped because the store write failed",
            unit="1"
        )

        self.flush_duration_histogram = meter.create_histogram(
            name=f"{prefix}reporter_flush_duration_seconds",
            description="Duration of each store batch write in seconds",
            unit="s"
        )

        self.handler_errors_counter = meter.create_counter(
            name=f"{prefix}reporter_handler_errors_total",
            description="Total number of event contributions dropped by a failing definition",
            unit="1"
        )

        self.cache_misses_counter = meter.create_counter(
            name=f"{prefix}reporter_cache_misses_total",
            description="Total number of series id lookups that went to the store",
            unit="1"
        )

        # UpDownCounter: track the last value so we can send deltas
        self.cached_series_counter = meter.create_up_down_counter(
            name=f"{prefix}reporter_cached_series",
            description="Number of series ids held in the resolution cache",
            unit="1"
        )

        self.buffered_points_counter = meter.create_up_down_counter(
            name=f"{prefix}reporter_buffered_points",
            description="Number of points waiting in the write buffer",
            unit="1"
        )

    def record_flush(self, point_count: int, duration: float):
        self.flushes_counter.add(1)
        self.points_flushed_counter.add(point_count)
        self.flush_duration_histogram.record(duration)

    def record_flush_error(self):
        self.flush_errors_counter.add(1)

    def record_handler_error(self, metric_name: str):
        self.handler_errors_counter.add(1, {"metric_name": metric_name})

    def record_cache_miss(self, metric_name: str):
        self.cache_misses_counter.add(1, {"metric_name": metric_name})

    def set_cached_series(self, count: int):
        delta = count - self._cached_series
        if delta != 0:
            self.cached_series_counter.add(delta)
            self._cached_series = count

    def set_buffered_points(self, count: int):
        delta = count - self._buffered_points
        if delta != 0:
            self.buffered_points_counter.add(delta)
            self._buffered_points = count


def create_meter_provider(export_interval_s: float = 60, reader=None, resource_attrs=None) -> MeterProvider:
    """
    Build an SDK MeterProvider for the OpenTelemetry self-metrics.

    Args:
        export_interval_s: Export interval for the default console reader
        reader: Metric reader to use instead of the periodic console export
        resource_attrs: Extra resource attributes

    Returns:
        MeterProvider (not installed globally; the caller decides)
    """
    attrs = {"service.name": "telemetry-reporter"}
    attrs.update(resource_attrs or {})

    if reader is None:
        reader = PeriodicExportingMetricReader(
            ConsoleMetricExporter(),
            export_interval_millis=export_interval_s * 1000
        )

    return MeterProvider(resource=Resource.create(attrs), metric_readers=[reader])
