"""Declarative metric definitions derived from instrumentation events."""
from typing import Any, Callable, Literal, Mapping, Optional, Sequence, Tuple, Union
import inspect

from pydantic import BaseModel, ConfigDict, PrivateAttr, field_validator, model_validator

from telemetry_reporter.units import Unit

MetricKind = Literal["counter", "sum", "last_value", "summary", "distribution"]

METRIC_TYPES = {
    "counter": "counter",
    "sum": "counter",
    "last_value": "gauge",
    "summary": "gauge",
    "distribution": "histogram",
}


def split_name(name: Union[str, Sequence[str]]) -> Tuple[str, ...]:
    """Normalize a dotted string or a sequence of segments to a tuple."""
    if isinstance(name, str):
        segments = tuple(name.split("."))
    else:
        segments = tuple(str(segment) for segment in name)

    if not segments or any(segment == "" for segment in segments):
        raise ValueError(f"Invalid metric or event name: {name!r}")

    return segments


class MetricDefinition(BaseModel):
    """Describes one series family derived from an event."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: MetricKind
    name: Tuple[str, ...]
    event_name: Tuple[str, ...]
    measurement: Union[str, Callable[..., Any]]
    unit: Unit = "unit"
    tags: Tuple[str, ...] = ()
    tag_values: Optional[Callable[[Mapping[str, Any]], Mapping[str, Any]]] = None
    keep: Optional[Callable[[Mapping[str, Any]], bool]] = None
    description: Optional[str] = None

    @field_validator("name", "event_name", mode="before")
    @classmethod
    def validate_segments(cls, v):
        """Accept dotted strings as well as segment sequences."""
        return split_name(v)

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v):
        """Tags are stored as plain strings."""
        if v is None:
            return ()
        return tuple(str(tag) for tag in v)

    @field_validator("unit", mode="before")
    @classmethod
    def validate_unit(cls, v):
        """Conversion pairs may arrive as lists (e.g. from YAML)."""
        if isinstance(v, list):
            if len(v) != 2:
                raise ValueError(f"Unit conversion must be a (from, to) pair, got {v!r}")
            return tuple(v)
        return v

    _takes_metadata: bool = PrivateAttr(default=False)

    @model_validator(mode="after")
    def validate_tag_order(self):
        """Tags must not repeat."""
        if len(self.tags) != len(set(self.tags)):
            raise ValueError(f"Duplicate tags in metric {self.full_name}: {self.tags}")
        return self

    def model_post_init(self, __context: Any) -> None:
        if callable(self.measurement):
            self._takes_metadata = accepts_metadata(self.measurement)

    @property
    def full_name(self) -> str:
        return ".".join(self.name)

    @property
    def metric_type(self) -> str:
        """Storage metric type for this kind."""
        return METRIC_TYPES[self.kind]

    def extract_value(self, measurements: Mapping[str, Any], metadata: Mapping[str, Any]) -> Any:
        """Pull the raw value out of an event, or None when there is none."""
        if isinstance(self.measurement, str):
            return measurements.get(self.measurement)

        if self._takes_metadata:
            return self.measurement(measurements, metadata)
        return self.measurement(measurements)

    def keeps(self, metadata: Mapping[str, Any]) -> bool:
        if self.keep is None:
            return True
        return bool(self.keep(metadata))

    def extract_labels(self, metadata: Mapping[str, Any]) -> dict:
        """Project tag values onto the declared tags, dropping empty values."""
        if self.tag_values is not None:
            tag_values = self.tag_values(metadata)
        else:
            tag_values = metadata

        labels = {}
        for tag in self.tags:
            rendered = render_label_value(tag_values.get(tag, ""))
            if rendered != "":
                labels[tag] = rendered
        return labels


def render_label_value(value: Any) -> str:
    """Render a tag value to the string stored as a label."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def accepts_metadata(fn: Callable[..., Any]) -> bool:
    """True if the extractor accepts (measurements, metadata)."""
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return False

    positional = 0
    for param in params:
        if param.kind == inspect.Parameter.VAR_POSITIONAL:
            return True
        if param.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional >= 2


def metric(kind: MetricKind, name: Union[str, Sequence[str]], **opts) -> MetricDefinition:
    """
    Build a metric definition.

    Args:
        kind: Metric kind
        name: Dotted name or segments. Unless ``event_name`` is given, the
            last segment is the measurement key and the rest is the event.
        **opts: ``event_name``, ``measurement``, ``unit``, ``tags``,
            ``tag_values``, ``keep``, ``description``

    Returns:
        Immutable MetricDefinition
    """
    segments = split_name(name)
    if len(segments) < 2 and "event_name" not in opts:
        raise ValueError(f"Metric name {name!r} needs an event prefix and a measurement")

    opts.setdefault("event_name", segments[:-1])
    opts.setdefault("measurement", segments[-1])

    return MetricDefinition(kind=kind, name=segments, **opts)


def counter(name, **opts) -> MetricDefinition:
    return metric("counter", name, **opts)


def sum_(name, **opts) -> MetricDefinition:
    return metric("sum", name, **opts)


def last_value(name, **opts) -> MetricDefinition:
    return metric("last_value", name, **opts)


def summary(name, **opts) -> MetricDefinition:
    return metric("summary", name, **opts)


def distribution(name, **opts) -> MetricDefinition:
    return metric("distribution", name, **opts)
