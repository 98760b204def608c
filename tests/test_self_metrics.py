"""Tests for reporter self-monitoring."""
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from telemetry_reporter.definitions import counter
from telemetry_reporter.events import EventBus
from telemetry_reporter.reporter import Reporter
from telemetry_reporter.self_metrics import OTELSelfMetrics, SelfMetrics, create_meter_provider
from telemetry_reporter.store import InMemoryStore


def otel_metric_names(reader):
    data = reader.get_metrics_data()
    return {
        m.name
        for rm in data.resource_metrics
        for sm in rm.scope_metrics
        for m in sm.metrics
    }


def test_prometheus_self_metrics_track_flushes():
    self_metrics = SelfMetrics(prefix="test_")
    bus = EventBus()
    reporter = Reporter(InMemoryStore(), [counter("a.b.count", tags=["k"])], flush_interval=0,
                        bus=bus, self_metrics=self_metrics).start()

    bus.execute("a.b", {"count": 1}, {"k": "x"})
    bus.execute("a.b", {"count": 1}, {"k": "y"})
    reporter.flush()
    reporter.stop()

    registry = self_metrics.registry
    assert registry.get_sample_value("test_reporter_flushes_total") == 1.0
    assert registry.get_sample_value("test_reporter_points_flushed_total") == 2.0
    assert registry.get_sample_value("test_reporter_cached_series") == 2.0
    assert registry.get_sample_value("test_reporter_cache_misses_total", {"metric_name": "telemetry.a.b.count"}) == 2.0
    assert registry.get_sample_value("test_reporter_buffered_points") == 0.0
    assert b"test_reporter_flush_duration_seconds" in self_metrics.exposition()


def test_otel_self_metrics_record_on_meter():
    reader = InMemoryMetricReader()
    provider = MeterProvider(metric_readers=[reader])
    otel = OTELSelfMetrics(provider.get_meter("test"))

    otel.record_flush(3, 0.01)
    otel.record_flush_error()
    otel.record_cache_miss("telemetry.a.b")
    otel.set_cached_series(4)
    otel.set_buffered_points(2)

    names = otel_metric_names(reader)
    assert "reporter_flushes_total" in names
    assert "reporter_points_flushed_total" in names
    assert "reporter_flush_errors_total" in names
    assert "reporter_cached_series" in names
    assert "reporter_buffered_points" in names
    provider.shutdown()


def otel_sum_value(reader, name):
    data = reader.get_metrics_data()
    for rm in data.resource_metrics:
        for sm in rm.scope_metrics:
            for m in sm.metrics:
                if m.name == name:
                    return sum(point.value for point in m.data.data_points)
    return None


def test_buffered_points_gauge_tracks_pending_points():
    self_metrics = SelfMetrics()
    bus = EventBus()
    reporter = Reporter(InMemoryStore(), [counter("a.b.count")], flush_interval=0,
                        bus=bus, self_metrics=self_metrics).start()
    registry = self_metrics.registry

    for _ in range(3):
        bus.execute("a.b", {"count": 1}, {})

    reporter.flush()
    assert registry.get_sample_value("reporter_buffered_points") == 0.0
    assert registry.get_sample_value("reporter_points_flushed_total") == 3.0
    reporter.stop()


def test_otel_buffered_points_reports_current_value():
    reader = InMemoryMetricReader()
    provider = MeterProvider(metric_readers=[reader])
    otel = OTELSelfMetrics(provider.get_meter("test"))

    otel.set_buffered_points(5)
    otel.set_buffered_points(0)
    otel.set_buffered_points(2)

    assert otel_sum_value(reader, "reporter_buffered_points") == 2
    provider.shutdown()


def test_meter_provider_records_otel_self_metrics():
    reader = InMemoryMetricReader()
    provider = create_meter_provider(reader=reader, resource_attrs={"deployment.environment": "test"})
    otel = OTELSelfMetrics(provider.get_meter("telemetry_reporter"), prefix="cli_")

    otel.record_flush(7, 0.002)

    assert otel_sum_value(reader, "cli_reporter_points_flushed_total") == 7
    [resource_metrics] = reader.get_metrics_data().resource_metrics
    assert resource_metrics.resource.attributes["service.name"] == "telemetry-reporter"
    assert resource_metrics.resource.attributes["deployment.environment"] == "test"
    provider.shutdown()


def test_meter_provider_defaults_to_periodic_console_export():
    provider = create_meter_provider(export_interval_s=30)

    assert isinstance(provider, MeterProvider)
    provider.shutdown()
