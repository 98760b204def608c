"""Tests for metric definitions and their extraction helpers."""
import pytest
from pydantic import ValidationError

from telemetry_reporter.definitions import (
    counter, distribution, last_value, metric, render_label_value, sum_, summary
)


def test_name_splits_into_event_and_measurement():
    d = summary("http.request.stop.duration")
    assert d.name == ("http", "request", "stop", "duration")
    assert d.event_name == ("http", "request", "stop")
    assert d.measurement == "duration"
    assert d.full_name == "http.request.stop.duration"


def test_explicit_event_name_keeps_measurement_from_name():
    d = counter("test.tagged.count", event_name="test.tagged")
    assert d.event_name == ("test", "tagged")
    assert d.measurement == "count"


def test_metric_types():
    assert counter("a.b").metric_type == "counter"
    assert sum_("a.b").metric_type == "counter"
    assert last_value("a.b").metric_type == "gauge"
    assert summary("a.b").metric_type == "gauge"
    assert distribution("a.b").metric_type == "histogram"


def test_definitions_are_immutable():
    d = summary("a.b.c")
    with pytest.raises(ValidationError):
        d.kind = "counter"


def test_invalid_definitions_rejected():
    with pytest.raises(ValueError):
        metric("summary", "single")
    with pytest.raises(ValueError):
        summary("a..b")
    with pytest.raises(ValueError):
        summary("a.b", tags=["x", "x"])
    with pytest.raises(ValueError):
        summary("a.b", unit=["native"])


def test_unit_list_becomes_pair():
    assert summary("a.b", unit=["native", "millisecond"]).unit == ("native", "millisecond")


def test_extract_value_by_key_and_function():
    by_key = summary("a.b.value")
    assert by_key.extract_value({"value": 3}, {}) == 3
    assert by_key.extract_value({}, {}) is None

    one_arg = summary("a.b.value", measurement=lambda m: m["x"] * 2)
    assert one_arg.extract_value({"x": 2}, {}) == 4

    two_args = summary("a.b.value", measurement=lambda m, md: m["x"] + md["y"])
    assert two_args.extract_value({"x": 2}, {"y": 5}) == 7


def test_keep_predicate():
    d = counter("a.b.count", keep=lambda md: md.get("keep") is True)
    assert d.keeps({"keep": True})
    assert not d.keeps({"keep": False})
    assert counter("a.b.count").keeps({})


def test_extract_labels_projects_and_renders():
    d = counter("a.b.count", tags=["method", "status", "missing"])
    labels = d.extract_labels({"method": "GET", "status": 200, "other": "x"})
    assert labels == {"method": "GET", "status": "200"}


def test_extract_labels_uses_tag_values():
    d = counter(
        "a.b.count",
        tags=["source"],
        tag_values=lambda md: {"source": md.get("table", "unknown")}
    )
    assert d.extract_labels({"table": "users"}) == {"source": "users"}
    assert d.extract_labels({}) == {"source": "unknown"}


def test_render_label_value():
    assert render_label_value(None) == ""
    assert render_label_value(True) == "true"
    assert render_label_value(b"abc") == "abc"
    assert render_label_value(3.5) == "3.5"
