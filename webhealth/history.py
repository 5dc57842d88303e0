from __future__ import annotations

import json
import logging
import time
from bisect import bisect_left, bisect_right
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from webhealth.persistence import PersistenceBackend, record_key


LOGGER = logging.getLogger("web-health-check")

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"
UNKNOWN = "unknown"
SAMPLE_OUTCOMES = frozenset({HEALTHY, UNHEALTHY})

DEFAULT_RETENTION_SECONDS = 30 * 86400.0


@dataclass(frozen=True)
class Sample:
    ts: float
    outcome: str

    def __post_init__(self) -> None:
        if self.outcome not in SAMPLE_OUTCOMES:
            raise ValueError(f"Invalid sample outcome: {self.outcome!r}")


History = tuple[Sample, ...]


def format_ts(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat().replace("+00:00", "Z")


def parse_ts(value: Any) -> float:
    """
    Accepts unix seconds (int/float/numeric string) or an ISO-8601 datetime.
    Naive datetimes are taken as UTC.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    s = str(value or "").strip()
    if not s:
        raise ValueError("Empty timestamp")
    try:
        return float(s)
    except ValueError:
        pass

    s_iso = s[:-1] + "+00:00" if s.endswith("Z") else s
    dt = datetime.fromisoformat(s_iso)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


# On-disk record: JSON list of {"timestamp": "<ISO-8601 UTC>", "status": "healthy"|"unhealthy"}.
# Numeric unix timestamps are accepted on read.
def encode_history(items: Iterable[Sample]) -> bytes:
    payload = [{"timestamp": format_ts(s.ts), "status": s.outcome} for s in items]
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


def decode_history(data: bytes) -> list[Sample]:
    """
    Best-effort decode of a persisted record.
    Raises ValueError if the record as a whole is unusable; skips invalid entries.
    """
    raw = json.loads(data.decode("utf-8"))
    if not isinstance(raw, list):
        raise ValueError(f"Expected a JSON list, got {type(raw).__name__}")

    samples: list[Sample] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        status = entry.get("status")
        if status not in SAMPLE_OUTCOMES or entry.get("timestamp") is None:
            continue
        try:
            ts = parse_ts(entry["timestamp"])
        except (TypeError, ValueError, OverflowError):
            continue
        samples.append(Sample(ts=ts, outcome=status))

    samples.sort(key=lambda s: s.ts)
    return samples


def window_samples(items: History | list[Sample], *, since_ts: float) -> History:
    if not items:
        return ()
    ts_list = [s.ts for s in items]
    idx = bisect_left(ts_list, float(since_ts))
    return tuple(items[idx:])


def insert_sample(items: History, sample: Sample) -> History:
    # Normal case: samples arrive in time order. Otherwise insert after equal timestamps.
    if not items or items[-1].ts <= sample.ts:
        return items + (sample,)
    idx = bisect_right([s.ts for s in items], sample.ts)
    return items[:idx] + (sample,) + items[idx:]


class RetentionStore:
    """
    Time-bounded sample history per endpoint.

    Each endpoint's history is an immutable tuple that is replaced on append,
    so readers always get a whole snapshot. Persistence is best effort: write
    failures are logged and the in-memory history stays authoritative.
    """

    def __init__(
        self,
        backend: PersistenceBackend,
        *,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if float(retention_seconds) <= 0:
            raise ValueError("retention_seconds must be > 0")
        self.backend = backend
        self.retention_seconds = float(retention_seconds)
        self._clock = clock
        self._histories: dict[str, History] = {}

    def _cutoff(self, now_ts: float | None) -> float:
        now = self._clock() if now_ts is None else float(now_ts)
        return now - self.retention_seconds

    def endpoints(self) -> list[str]:
        return list(self._histories.keys())

    def history(self, endpoint: str) -> History:
        return self._histories.get(endpoint, ())

    def query(self, endpoint: str, since_ts: float) -> History:
        return window_samples(self.history(endpoint), since_ts=since_ts)

    def load(self, endpoint: str, now_ts: float | None = None) -> History:
        key = record_key(endpoint)
        items: History = ()
        try:
            data = self.backend.read_record(key)
            if data is not None:
                items = window_samples(decode_history(data), since_ts=self._cutoff(now_ts))
        except Exception as exc:
            LOGGER.warning("Failed to load history endpoint=%s key=%s error=%s", endpoint, key, exc)
            items = ()

        self._histories[endpoint] = items
        if items:
            LOGGER.info("Loaded history endpoint=%s samples=%s", endpoint, len(items))
        return items

    def load_all(self, endpoints: Iterable[str], now_ts: float | None = None) -> dict[str, History]:
        return {endpoint: self.load(endpoint, now_ts=now_ts) for endpoint in endpoints}

    def append(self, endpoint: str, sample: Sample, now_ts: float | None = None) -> History:
        if not endpoint:
            raise ValueError("endpoint is required")
        if not isinstance(sample, Sample):
            raise TypeError(f"Expected Sample, got {type(sample).__name__}")

        # Trim what we already hold, then add the new sample.
        kept = window_samples(self.history(endpoint), since_ts=self._cutoff(now_ts))
        items = insert_sample(kept, sample)
        self._histories[endpoint] = items
        self._persist(endpoint, items)
        return items

    def _persist(self, endpoint: str, items: History) -> bool:
        key = record_key(endpoint)
        try:
            self.backend.write_record(key, encode_history(items))
        except Exception as exc:
            LOGGER.warning("Failed to persist history endpoint=%s key=%s error=%s", endpoint, key, exc)
            return False
        return True
