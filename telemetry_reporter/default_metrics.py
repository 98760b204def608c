"""Ready-made metric definitions for the events this package emits."""
from typing import Any, Dict, List, Mapping

from telemetry_reporter.definitions import MetricDefinition, counter, last_value, summary


def process_metrics() -> List[MetricDefinition]:
    """
    Interpreter and process metrics emitted by ``ProcessPoller``.

    Captures memory (peak RSS, allocated blocks), garbage collector
    generation counts, thread count and CPU time.
    """
    return [
        # Memory
        last_value("process.memory.max_rss", unit=("byte", "megabyte")),
        last_value("process.memory.allocated_blocks"),

        # Garbage collector
        last_value("process.gc.gen0"),
        last_value("process.gc.gen1"),
        last_value("process.gc.gen2"),

        # Threads and CPU
        last_value("process.threads.count"),
        last_value("process.cpu.user_time", unit="second"),
        last_value("process.cpu.system_time", unit="second"),
    ]


def http_metrics() -> List[MetricDefinition]:
    """
    HTTP request metrics emitted by ``TelemetryMiddleware``.

    Captures request duration and count, tagged by method, route, and status.
    """
    tags = ["method", "route", "status"]
    return [
        summary(
            "http.request.stop.duration",
            unit=("native", "millisecond"),
            tags=tags,
            tag_values=http_tag_values,
            description="HTTP request duration"
        ),
        counter(
            "http.request.stop.duration",
            tags=tags,
            tag_values=http_tag_values,
            description="HTTP request count"
        ),
    ]


def store_metrics() -> List[MetricDefinition]:
    """
    Metrics for the store's own batch writes and queries.

    These let the store be monitored through the same pipeline it backs.
    """
    return [
        summary("store.write.batch.point_count"),
        summary("store.write.batch.series_count"),
        counter("store.write.batch.point_count"),
        summary("store.query.multi.duration", unit=("native", "millisecond")),
        summary("store.query.multi.point_count"),
        summary("store.query.multi.series_count"),
    ]


def all_metrics() -> List[MetricDefinition]:
    return process_metrics() + http_metrics() + store_metrics()


METRIC_GROUPS = {
    "process": process_metrics,
    "http": http_metrics,
    "store": store_metrics,
}


def http_tag_values(metadata: Mapping[str, Any]) -> Dict[str, Any]:
    """Prefer the matched route template; fall back to the raw path."""
    return {
        "method": metadata.get("method"),
        "route": metadata.get("route") or metadata.get("path"),
        "status": metadata.get("status"),
    }
