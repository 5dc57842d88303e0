from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlsplit

import yaml

from webhealth.grid import slot_count_for
from webhealth.state import StreakThresholds


DEFAULT_CONFIG_PATH = Path(__file__).with_name("config.yaml")


@dataclass(frozen=True)
class MonitorConfig:
    endpoints: tuple[str, ...]
    check_interval_seconds: float = 60.0
    timeout_seconds: float = 10.0
    # Extra wall-clock allowance for the transport above timeout_seconds.
    probe_grace_seconds: float = 5.0
    retention_days: float = 30.0
    grid_window_seconds: float = 24 * 3600.0
    grid_slot_seconds: float = 60.0
    data_dir: str = "./data"
    webhook_url: str | None = None
    # None means 200-399.
    allowed_status_codes: tuple[int, ...] | None = None
    alert_after_failures: int = 1
    sustained_after_failures: int = 5
    recovered_after_successes: int = 10
    check_concurrency: int = 10
    host: str = "0.0.0.0"
    port: int = 3000

    @property
    def timeout_ms(self) -> int:
        return int(round(self.timeout_seconds * 1000))

    @property
    def probe_grace_ms(self) -> int:
        return int(round(self.probe_grace_seconds * 1000))

    @property
    def retention_seconds(self) -> float:
        return float(self.retention_days) * 86400.0

    @property
    def thresholds(self) -> StreakThresholds:
        return StreakThresholds(
            alert_after_failures=self.alert_after_failures,
            sustained_after_failures=self.sustained_after_failures,
            recovered_after_successes=self.recovered_after_successes,
        )


def load_config(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Config YAML could not be parsed: {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("Config YAML must be a mapping")
    return data


def _env_str(env: Mapping[str, str], name: str) -> str | None:
    raw = env.get(name)
    if raw is None:
        return None
    s = str(raw).strip()
    return s or None


def _env_float(env: Mapping[str, str], name: str) -> float | None:
    s = _env_str(env, name)
    if s is None:
        return None
    try:
        return float(s)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {s!r}") from exc


def _env_int(env: Mapping[str, str], name: str) -> int | None:
    s = _env_str(env, name)
    if s is None:
        return None
    try:
        return int(s)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {s!r}") from exc


def _positive_float(raw: Mapping[str, Any], key: str, default: float) -> float:
    value = raw.get(key, default)
    try:
        out = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be a number, got {value!r}") from exc
    if out <= 0:
        raise ValueError(f"{key} must be > 0, got {value!r}")
    return out


def _positive_int(raw: Mapping[str, Any], key: str, default: int) -> int:
    value = raw.get(key, default)
    if isinstance(value, bool):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    try:
        out = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be an integer, got {value!r}") from exc
    if out < 1:
        raise ValueError(f"{key} must be >= 1, got {value!r}")
    return out


def _status_codes(value: Any) -> tuple[int, ...] | None:
    if value is None:
        return None
    if not isinstance(value, (list, tuple)) or not value:
        raise ValueError(f"allowed_status_codes must be a non-empty list of ints, got {value!r}")
    out: list[int] = []
    for code in value:
        if isinstance(code, bool):
            raise ValueError(f"allowed_status_codes entries must be integers, got {code!r}")
        try:
            out.append(int(code))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"allowed_status_codes entries must be integers, got {code!r}") from exc
    return tuple(out)


def _normalize_endpoints(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        value = [part for part in value.split(";")]
    if not isinstance(value, (list, tuple)):
        raise ValueError("endpoints must be a list of URLs")

    out: list[str] = []
    seen: set[str] = set()
    for idx, entry in enumerate(value):
        if isinstance(entry, dict):
            entry = entry.get("url")
        url = str(entry or "").strip()
        if not url:
            continue
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"endpoints[{idx}] must be an http(s) URL, got {url!r}")
        if url in seen:
            raise ValueError(f"Duplicate endpoint entry: {url}")
        seen.add(url)
        out.append(url)

    if not out:
        raise ValueError("No endpoints configured (set 'endpoints' in the config or DOMAINS)")
    return tuple(out)


def _apply_env(raw: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    merged = dict(raw)

    domains = _env_str(env, "DOMAINS")
    if domains is not None:
        merged["endpoints"] = domains
    webhook = _env_str(env, "SLACK_WEBHOOK_URL")
    if webhook is not None:
        merged["webhook_url"] = webhook
    port = _env_int(env, "PORT")
    if port is not None:
        merged["port"] = port
    interval_min = _env_float(env, "CHECK_INTERVAL_MINUTES")
    if interval_min is not None:
        merged["check_interval_seconds"] = interval_min * 60.0
    timeout = _env_float(env, "TIMEOUT_SECONDS")
    if timeout is not None:
        merged["timeout_seconds"] = timeout
    data_dir = _env_str(env, "PERSIST_DATA_DIR")
    if data_dir is not None:
        merged["data_dir"] = data_dir
    retention = _env_float(env, "RETENTION_DAYS")
    if retention is not None:
        merged["retention_days"] = retention
    return merged


def build_config(raw: Mapping[str, Any] | None = None, *, env: Mapping[str, str] | None = None) -> MonitorConfig:
    """
    Build and validate the monitor configuration once.

    Precedence: environment over `raw` (usually the YAML file) over defaults.
    `env` defaults to os.environ; tests pass a plain dict.
    """
    merged = _apply_env(dict(raw or {}), os.environ if env is None else env)

    allowed = _status_codes(merged.get("allowed_status_codes"))

    window = _positive_float(merged, "grid_window_seconds", 24 * 3600.0)
    slot = _positive_float(merged, "grid_slot_seconds", 60.0)
    try:
        slot_count_for(window, slot)
    except ValueError as exc:
        raise ValueError(f"grid_window_seconds/grid_slot_seconds: {exc}") from exc

    webhook = str(merged.get("webhook_url") or "").strip() or None

    grace = merged.get("probe_grace_seconds", 5.0)
    try:
        grace_f = float(grace)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"probe_grace_seconds must be a number, got {grace!r}") from exc
    if grace_f < 0:
        raise ValueError(f"probe_grace_seconds must be >= 0, got {grace!r}")

    port = _positive_int(merged, "port", 3000)
    if port > 65535:
        raise ValueError(f"port must be <= 65535, got {port}")

    return MonitorConfig(
        endpoints=_normalize_endpoints(merged.get("endpoints")),
        check_interval_seconds=_positive_float(merged, "check_interval_seconds", 60.0),
        timeout_seconds=_positive_float(merged, "timeout_seconds", 10.0),
        probe_grace_seconds=grace_f,
        retention_days=_positive_float(merged, "retention_days", 30.0),
        grid_window_seconds=window,
        grid_slot_seconds=slot,
        data_dir=str(merged.get("data_dir") or "./data"),
        webhook_url=webhook,
        allowed_status_codes=allowed,
        alert_after_failures=_positive_int(merged, "alert_after_failures", 1),
        sustained_after_failures=_positive_int(merged, "sustained_after_failures", 5),
        recovered_after_successes=_positive_int(merged, "recovered_after_successes", 10),
        check_concurrency=_positive_int(merged, "check_concurrency", 10),
        host=str(merged.get("host") or "0.0.0.0"),
        port=port,
    )
