from __future__ import annotations

import math
from typing import Iterable

from webhealth.history import UNKNOWN, Sample


def slot_count_for(window_seconds: float, slot_seconds: float) -> int:
    window = float(window_seconds)
    slot = float(slot_seconds)
    if window <= 0 or slot <= 0:
        raise ValueError("window_seconds and slot_seconds must be > 0")
    count = window / slot
    rounded = int(round(count))
    if rounded < 1 or not math.isclose(count, rounded, rel_tol=0.0, abs_tol=1e-9):
        raise ValueError(f"window_seconds={window} is not a whole multiple of slot_seconds={slot}")
    return rounded


def _round_half_up(value: float) -> int:
    # round() would round 0.5 to even.
    return int(math.floor(value + 0.5))


def slot_index(ts: float, *, window_start: float, slot_seconds: float, slot_count: int) -> int:
    raw = (float(ts) - float(window_start)) / float(slot_seconds)
    return max(0, min(slot_count - 1, _round_half_up(raw)))


def map_to_grid(
    samples: Iterable[Sample],
    *,
    now_ts: float,
    window_seconds: float,
    slot_seconds: float,
) -> list[str]:
    """
    Map time-ordered samples onto a fixed trailing window of slots.

    Indexes are rounded to the nearest slot and clamped to the grid, so a
    sample at exactly `now - window` lands in slot 0 and one at `now` in the
    last slot. When several samples share a slot the last one wins.
    """
    count = slot_count_for(window_seconds, slot_seconds)
    window_start = float(now_ts) - float(window_seconds)
    grid = [UNKNOWN] * count
    for sample in samples:
        idx = slot_index(sample.ts, window_start=window_start, slot_seconds=slot_seconds, slot_count=count)
        grid[idx] = sample.outcome
    return grid


def slot_times(*, now_ts: float, window_seconds: float, slot_seconds: float) -> list[float]:
    """Label instant per slot; the last slot is labelled `now`."""
    count = slot_count_for(window_seconds, slot_seconds)
    now = float(now_ts)
    slot = float(slot_seconds)
    return [now - (count - i - 1) * slot for i in range(count)]
