from __future__ import annotations

import sys
from pathlib import Path

import pytest

from webhealth.config import DEFAULT_CONFIG_PATH, build_config, load_config
from webhealth.main import main


def test_defaults() -> None:
    cfg = build_config({"endpoints": ["https://a.example"]}, env={})
    assert cfg.endpoints == ("https://a.example",)
    assert cfg.check_interval_seconds == 60.0
    assert cfg.timeout_ms == 10_000
    assert cfg.probe_grace_ms == 5_000
    assert cfg.retention_seconds == 30 * 86400.0
    assert cfg.grid_window_seconds / cfg.grid_slot_seconds == 1440
    assert cfg.allowed_status_codes is None
    assert cfg.webhook_url is None
    assert cfg.thresholds.alert_after_failures == 1
    assert cfg.thresholds.sustained_after_failures == 5
    assert cfg.thresholds.recovered_after_successes == 10
    assert cfg.port == 3000


def test_env_overrides_yaml_values() -> None:
    env = {
        "DOMAINS": "https://a.example; https://b.example ;",
        "SLACK_WEBHOOK_URL": "https://hooks.example/x",
        "PORT": "8080",
        "CHECK_INTERVAL_MINUTES": "2",
        "TIMEOUT_SECONDS": "3",
        "PERSIST_DATA_DIR": "/tmp/wh",
        "RETENTION_DAYS": "7",
    }
    cfg = build_config({"endpoints": ["https://ignored.example"], "port": 1234}, env=env)
    assert cfg.endpoints == ("https://a.example", "https://b.example")
    assert cfg.webhook_url == "https://hooks.example/x"
    assert cfg.port == 8080
    assert cfg.check_interval_seconds == 120.0
    assert cfg.timeout_ms == 3000
    assert cfg.data_dir == "/tmp/wh"
    assert cfg.retention_seconds == 7 * 86400.0


def test_blank_env_values_are_ignored() -> None:
    cfg = build_config({"endpoints": ["https://a.example"]}, env={"DOMAINS": "  ", "SLACK_WEBHOOK_URL": ""})
    assert cfg.endpoints == ("https://a.example",)
    assert cfg.webhook_url is None


def test_endpoint_mappings_are_accepted() -> None:
    cfg = build_config({"endpoints": [{"url": "https://a.example"}, "http://b.example"]}, env={})
    assert cfg.endpoints == ("https://a.example", "http://b.example")


@pytest.mark.parametrize(
    "raw",
    [
        {},
        {"endpoints": []},
        {"endpoints": ["ftp://a.example"]},
        {"endpoints": ["a.example"]},
        {"endpoints": ["https://a.example", "https://a.example"]},
        {"endpoints": ["https://a.example"], "timeout_seconds": 0},
        {"endpoints": ["https://a.example"], "grid_window_seconds": 100, "grid_slot_seconds": 30},
        {"endpoints": ["https://a.example"], "allowed_status_codes": []},
        {"endpoints": ["https://a.example"], "sustained_after_failures": "five"},
        {"endpoints": ["https://a.example"], "port": 70000},
        {"endpoints": ["https://a.example"], "probe_grace_seconds": -1},
    ],
)
def test_invalid_config_raises(raw: dict) -> None:
    with pytest.raises(ValueError):
        build_config(raw, env={})


def test_invalid_env_number_raises() -> None:
    with pytest.raises(ValueError, match="TIMEOUT_SECONDS"):
        build_config({"endpoints": ["https://a.example"]}, env={"TIMEOUT_SECONDS": "ten"})


def test_allowed_status_codes_restores_strict_policy() -> None:
    cfg = build_config({"endpoints": ["https://a.example"], "allowed_status_codes": [200]}, env={})
    assert cfg.allowed_status_codes == (200,)


def test_load_config_requires_mapping(tmp_path: Path) -> None:
    p = tmp_path / "config.yaml"
    p.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(p)


def test_shipped_config_requires_endpoints() -> None:
    raw = load_config(DEFAULT_CONFIG_PATH)
    with pytest.raises(ValueError, match="No endpoints configured"):
        build_config(raw, env={})

    cfg = build_config(raw, env={"DOMAINS": "https://a.example"})
    assert cfg.endpoints == ("https://a.example",)
    assert cfg.grid_window_seconds / cfg.grid_slot_seconds == 1440


@pytest.mark.parametrize("codes", [[None], ["x"], [True], "200"])
def test_invalid_status_codes_name_the_key(codes) -> None:
    with pytest.raises(ValueError, match="allowed_status_codes"):
        build_config({"endpoints": ["https://a.example"], "allowed_status_codes": codes}, env={})


def test_uneven_grid_names_the_keys() -> None:
    with pytest.raises(ValueError, match="grid_window_seconds"):
        build_config({"endpoints": ["https://a.example"], "grid_window_seconds": 90, "grid_slot_seconds": 60}, env={})


def test_malformed_yaml_is_a_value_error(tmp_path: Path) -> None:
    p = tmp_path / "config.yaml"
    p.write_text("endpoints: [https://a.example\nport: : 3000\n", encoding="utf-8")
    with pytest.raises(ValueError, match="could not be parsed"):
        load_config(p)


def test_cli_exits_2_without_endpoints(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DOMAINS", raising=False)
    monkeypatch.setattr(sys, "argv", ["webhealth"])
    assert main() == 2


def test_cli_exits_2_on_malformed_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    p = tmp_path / "config.yaml"
    p.write_text("endpoints: [\n", encoding="utf-8")
    monkeypatch.setenv("DOMAINS", "https://a.example")
    monkeypatch.setattr(sys, "argv", ["webhealth", "--config", str(p)])
    assert main() == 2
