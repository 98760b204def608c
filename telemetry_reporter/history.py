"""Reconstruct display history for a metric definition from stored series."""
from typing import Dict, Iterable, List, Mapping, Optional
import logging
import time

import numpy as np

from telemetry_reporter.definitions import MetricDefinition
from telemetry_reporter.reporter import DEFAULT_PREFIX, build_metric_name
from telemetry_reporter.series import HistoryPoint, SeriesResult

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_WINDOW = 3600


def build_label(definition: MetricDefinition, labels: Mapping[str, str]) -> Optional[str]:
    """
    Display label for a stored series.

    Stored labels are projected onto the definition's tags, in tag order,
    skipping empty values. Definitions without tags (or series with no
    matching values) get None, so all their series collapse together.
    """
    if not definition.tags:
        return None

    parts = [labels.get(tag, "") for tag in definition.tags]
    label = " ".join(part for part in parts if part != "")
    return label if label != "" else None


def aggregate_history(definition: MetricDefinition, series_list: Iterable[SeriesResult]) -> List[HistoryPoint]:
    """
    Collapse stored series into display points.

    Points are grouped by display label; within a label, values sharing a
    timestamp are averaged. Each label's points come out in ascending time
    order, with time in microseconds. Order across labels is unspecified.
    """
    grouped: Dict[Optional[str], Dict[float, List[float]]] = {}

    for series in series_list:
        label = build_label(definition, series.labels)
        by_time = grouped.setdefault(label, {})
        for timestamp, value in series.points:
            by_time.setdefault(timestamp, []).append(float(value))

    history = []
    for label, by_time in grouped.items():
        for timestamp in sorted(by_time):
            history.append(
                HistoryPoint(
                    label=label,
                    time=int(round(timestamp * 1_000_000)),
                    measurement=float(np.mean(by_time[timestamp]))
                )
            )

    return history


def metrics_history(
    definition: MetricDefinition,
    store,
    prefix: str = DEFAULT_PREFIX,
    history: int = DEFAULT_HISTORY_WINDOW
) -> List[HistoryPoint]:
    """
    Recent history for a definition, read back from the store.

    Args:
        definition: Metric definition to render
        store: Store the reporter writes to
        prefix: Metric name prefix; must match the reporter's
        history: Seconds of history to return

    Returns:
        History points, or an empty list if the store has nothing or fails
    """
    metric_name = build_metric_name(prefix, definition)
    to = int(time.time())
    from_ = to - history

    try:
        series_list = store.query_multi(metric_name, {}, from_=from_, to=to)
        if not series_list:
            return []
        return aggregate_history(definition, series_list)
    except Exception as e:
        logger.warning(f"History query for {metric_name} failed: {e}")
        return []
