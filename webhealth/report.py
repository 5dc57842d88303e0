from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from webhealth.grid import map_to_grid, slot_times
from webhealth.history import HEALTHY, UNHEALTHY, History, format_ts
from webhealth.state import EndpointState


def endpoint_status(state: EndpointState) -> dict[str, Any]:
    return {
        "status": state.status,
        "lastCheck": format_ts(state.last_checked_at),
        "lastError": state.last_error,
        "consecutiveErrors": int(state.consecutive_failures),
        "consecutiveSuccesses": int(state.consecutive_successes),
        "responseTime": state.last_latency_ms,
    }


def status_summary(states: Mapping[str, EndpointState], *, next_check_ts: float | None) -> dict[str, Any]:
    return {
        "nextCheckTime": format_ts(next_check_ts),
        "status": {endpoint: endpoint_status(state) for endpoint, state in states.items()},
    }


def window_stats(
    grid: list[str],
    samples: History,
    *,
    now_ts: float,
    window_seconds: float,
    slot_seconds: float,
) -> dict[str, Any]:
    """
    Slot-based uptime plus sample counts for one window.

    uptimePercent and minutesUnhealthy come from the grid, where samples
    older than the window are clamped into slot 0. totalSamplesInWindow only
    counts samples inside [now - window, now], so a lone stale sample can give
    a non-zero uptime with zero samples in the window.
    """
    slot_count = len(grid)
    healthy = sum(1 for s in grid if s == HEALTHY)
    unhealthy = sum(1 for s in grid if s == UNHEALTHY)
    window_start = float(now_ts) - float(window_seconds)
    in_window = [s for s in samples if window_start <= s.ts <= float(now_ts)]
    return {
        "uptimePercent": (100.0 * healthy / slot_count) if slot_count else 0.0,
        "minutesUnhealthy": unhealthy * float(slot_seconds) / 60.0,
        "totalSamplesInWindow": len(in_window),
        "lastSampleTimestamp": format_ts(samples[-1].ts) if samples else None,
    }


def _hour_rows(grid: list[str], times: list[float]) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    current_key = None
    for status, ts in zip(grid, times):
        dt = datetime.fromtimestamp(ts, tz=timezone.utc)
        key = dt.strftime("%Y-%m-%d %H")
        if key != current_key:
            rows.append({"label": dt.strftime("%H:00"), "slots": []})
            current_key = key
        rows[-1]["slots"].append({"time": dt.strftime("%H:%M"), "status": status})
    return rows


def history_view(
    endpoint: str,
    samples: History,
    *,
    now_ts: float,
    window_seconds: float,
    slot_seconds: float,
) -> dict[str, Any]:
    grid = map_to_grid(samples, now_ts=now_ts, window_seconds=window_seconds, slot_seconds=slot_seconds)
    times = slot_times(now_ts=now_ts, window_seconds=window_seconds, slot_seconds=slot_seconds)
    return {
        "endpoint": endpoint,
        "generatedAt": format_ts(now_ts),
        "windowSeconds": float(window_seconds),
        "slotSeconds": float(slot_seconds),
        "grid": grid,
        "stats": window_stats(
            grid,
            samples,
            now_ts=now_ts,
            window_seconds=window_seconds,
            slot_seconds=slot_seconds,
        ),
        "rows": _hour_rows(grid, times),
    }
