"""Unit conversion for raw measurements."""
from typing import Optional, Tuple, Union
import time

Unit = Union[str, Tuple[str, str]]

# Native ticks come from time.perf_counter_ns() / time.monotonic_ns()
NATIVE_TICKS_PER_SECOND = 1_000_000_000

_TIME_UNITS_PER_SECOND = {
    "second": 1,
    "millisecond": 1_000,
    "microsecond": 1_000_000,
    "nanosecond": 1_000_000_000,
}

_BYTE_DIVISORS = {
    "kilobyte": 1024,
    "megabyte": 1024 * 1024,
    "gigabyte": 1024 * 1024 * 1024,
}


def native_time() -> int:
    """Current monotonic time in native ticks."""
    return time.perf_counter_ns()


def native_to(value: float, unit: str) -> float:
    """
    Convert native clock ticks to the given time unit.

    The input is truncated toward zero first, then converted with integer
    floor division, matching integer-tick clock semantics.
    """
    ticks = int(value)
    per_second = _TIME_UNITS_PER_SECOND[unit]
    return float((ticks * per_second) // NATIVE_TICKS_PER_SECOND)


def convert_unit(value: float, unit: Optional[Unit]) -> float:
    """Convert a raw measurement according to a ``(from, to)`` unit pair."""
    if not isinstance(unit, tuple) or len(unit) != 2:
        return value

    from_unit, to_unit = unit

    if from_unit == "native" and to_unit in ("millisecond", "microsecond", "second"):
        return native_to(value, to_unit)

    if from_unit == "byte" and to_unit in _BYTE_DIVISORS:
        return value / _BYTE_DIVISORS[to_unit]

    if from_unit == "microsecond" and to_unit == "millisecond":
        return value / 1000

    return value


def format_unit(unit: Optional[Unit]) -> Optional[str]:
    """Unit name registered with the store (the target of a conversion pair)."""
    if isinstance(unit, tuple) and len(unit) == 2:
        return str(unit[1])
    if isinstance(unit, str):
        return unit
    return None
