"""Tests for history reconstruction."""
import time

import pytest

from telemetry_reporter.definitions import summary
from telemetry_reporter.history import aggregate_history, build_label, metrics_history
from telemetry_reporter.series import SeriesResult
from telemetry_reporter.store import InMemoryStore


class UnavailableStore(InMemoryStore):
    def query_multi(self, metric_name, label_filter, from_=None, to=None):
        raise ConnectionError("store unavailable")


@pytest.fixture
def store():
    return InMemoryStore()


def test_points_sorted_when_series_share_a_label(store):
    now = int(time.time())
    store.write("telemetry.test.query.duration", {"source": "users"}, 10.0, timestamp=now - 3)
    store.write("telemetry.test.query.duration", {"source": "users"}, 20.0, timestamp=now - 1)
    store.write("telemetry.test.query.duration", {"source": "posts"}, 15.0, timestamp=now - 2)

    result = metrics_history(summary("test.query.duration"), store)

    times = [p.time for p in result]
    assert times == sorted(times)
    assert len(result) == 3
    assert {p.label for p in result} == {None}


def test_single_series(store):
    now = int(time.time())
    for i, value in enumerate([1.0, 2.0, 3.0]):
        store.write("telemetry.test.single.value", {}, value, timestamp=now - 3 + i)

    result = metrics_history(summary("test.single.value"), store)

    assert [p.measurement for p in result] == [1.0, 2.0, 3.0]


def test_overlapping_timestamps_are_averaged(store):
    now = int(time.time())
    store.write("telemetry.test.overlap.value", {"source": "a"}, 100.0, timestamp=now)
    store.write("telemetry.test.overlap.value", {"source": "b"}, 200.0, timestamp=now)

    [point] = metrics_history(summary("test.overlap.value"), store)

    assert point.measurement == pytest.approx(150.0, abs=0.01)
    assert point.time == now * 1_000_000


def test_different_labels_are_not_averaged(store):
    now = int(time.time())
    store.write("telemetry.test.tagged.value", {"method": "GET"}, 100.0, timestamp=now)
    store.write("telemetry.test.tagged.value", {"method": "POST"}, 200.0, timestamp=now)

    result = metrics_history(summary("test.tagged.value", tags=["method"]), store)

    assert len(result) == 2
    assert sorted(p.label for p in result) == ["GET", "POST"]
    by_label = {p.label: p.measurement for p in result}
    assert by_label == {"GET": 100.0, "POST": 200.0}


def test_multiple_overlapping_timestamps(store):
    now = int(time.time())
    for source, (earlier, later) in {"x": (10, 40), "y": (20, 50), "z": (30, 60)}.items():
        store.write("telemetry.test.multi.overlap", {"source": source}, float(earlier), timestamp=now - 1)
        store.write("telemetry.test.multi.overlap", {"source": source}, float(later), timestamp=now)

    result = metrics_history(summary("test.multi.overlap"), store)

    assert len(result) == 2
    earlier, later = result
    assert earlier.time < later.time
    assert earlier.measurement == pytest.approx(20.0, abs=0.01)
    assert later.measurement == pytest.approx(50.0, abs=0.01)


def test_time_in_microseconds(store):
    now = int(time.time())
    store.write("telemetry.test.time.format", {}, 1.0, timestamp=now)

    [point] = metrics_history(summary("test.time.format"), store)

    assert point.time == now * 1_000_000


def test_empty_when_no_data(store):
    assert metrics_history(summary("test.nonexistent.metric"), store) == []


def test_empty_when_store_fails():
    assert metrics_history(summary("test.any.metric"), UnavailableStore()) == []


def test_history_window_excludes_old_points(store):
    now = int(time.time())
    store.write("telemetry.test.window.value", {}, 1.0, timestamp=now - 7200)
    store.write("telemetry.test.window.value", {}, 2.0, timestamp=now)

    assert [p.measurement for p in metrics_history(summary("test.window.value"), store)] == [2.0]
    assert len(metrics_history(summary("test.window.value"), store, history=10_000)) == 2


def test_prefix_must_match(store):
    now = int(time.time())
    store.write("app.test.prefixed.value", {}, 1.0, timestamp=now)

    assert metrics_history(summary("test.prefixed.value"), store) == []
    assert len(metrics_history(summary("test.prefixed.value"), store, prefix="app")) == 1


def test_build_label():
    d = summary("a.b.c", tags=["method", "route", "status"])
    assert build_label(d, {"status": "200", "method": "GET", "route": "/x"}) == "GET /x 200"
    assert build_label(d, {"method": "GET", "status": "500"}) == "GET 500"
    assert build_label(d, {"other": "x"}) is None
    assert build_label(summary("a.b.c"), {"method": "GET"}) is None


def test_aggregate_orders_each_label_ascending():
    d = summary("a.b.c", tags=["method"])
    series = [
        SeriesResult({"method": "GET"}, [(30, 3.0), (10, 1.0)]),
        SeriesResult({"method": "GET", "host": "b"}, [(20, 2.0), (10, 3.0)]),
        SeriesResult({"method": "POST"}, [(5, 9.0)]),
    ]

    result = aggregate_history(d, series)

    get_points = [(p.time, p.measurement) for p in result if p.label == "GET"]
    assert get_points == [(10_000_000, 2.0), (20_000_000, 2.0), (30_000_000, 3.0)]
    assert [(p.time, p.measurement) for p in result if p.label == "POST"] == [(5_000_000, 9.0)]


def test_aggregate_empty():
    assert aggregate_history(summary("a.b.c"), []) == []


def test_sub_second_timestamps_are_not_merged():
    d = summary("a.b.c")
    series = [SeriesResult({}, [(10.7, 4.0), (10.2, 2.0), (10.2, 6.0)])]

    result = aggregate_history(d, series)

    assert [(p.time, p.measurement) for p in result] == [(10_200_000, 4.0), (10_700_000, 4.0)]


class MalformedStore(InMemoryStore):
    def __init__(self, series_list):
        super().__init__()
        self.series_list = series_list

    def query_multi(self, metric_name, label_filter, from_=None, to=None):
        return self.series_list


@pytest.mark.parametrize("series_list", [
    [SeriesResult({}, [(1, None)])],
    [({}, [(1, 1.0)])],
])
def test_empty_when_store_returns_malformed_series(series_list):
    assert metrics_history(summary("test.any.metric"), MalformedStore(series_list)) == []
