from __future__ import annotations

import pytest

from webhealth.checks import PHP_ERROR_MARKER, ProbeOutcome, classify
from webhealth.history import HEALTHY, UNHEALTHY


@pytest.mark.parametrize("status", [200, 201, 204, 301, 302, 304, 399])
def test_accepted_status_range_is_healthy(status: int) -> None:
    c = classify(ProbeOutcome(latency_ms=50, http_status=status, body="ok"), timeout_ms=10_000)
    assert c.outcome == HEALTHY
    assert c.healthy is True
    assert c.reason is None


@pytest.mark.parametrize("status", [100, 199, 400, 404, 500, 502, 503])
def test_status_outside_range_is_unhealthy(status: int) -> None:
    c = classify(ProbeOutcome(latency_ms=50, http_status=status, body="ok"), timeout_ms=10_000)
    assert c.outcome == UNHEALTHY
    assert c.reason == f"HTTP {status}"


def test_transport_error_reason_is_verbatim() -> None:
    c = classify(ProbeOutcome(latency_ms=15_000, transport_error="Request timeout"), timeout_ms=10_000)
    assert c.outcome == UNHEALTHY
    assert c.reason == "Request timeout"


def test_slow_response_is_unhealthy() -> None:
    c = classify(ProbeOutcome(latency_ms=10_001, http_status=200, body="ok"), timeout_ms=10_000)
    assert c.outcome == UNHEALTHY
    assert c.reason == "Response time 10001ms exceeds 10000ms"


def test_latency_equal_to_threshold_is_healthy() -> None:
    c = classify(ProbeOutcome(latency_ms=10_000, http_status=200, body="ok"), timeout_ms=10_000)
    assert c.healthy is True


def test_php_error_marker_is_unhealthy() -> None:
    body = f"<html><body><h4>{PHP_ERROR_MARKER}</h4></body></html>"
    c = classify(ProbeOutcome(latency_ms=20, http_status=200, body=body), timeout_ms=10_000)
    assert c.outcome == UNHEALTHY
    assert c.reason == "PHP Error detected in page content"


def test_rules_apply_in_order() -> None:
    php = f"... {PHP_ERROR_MARKER} ..."
    # Status beats latency and body.
    c = classify(ProbeOutcome(latency_ms=99_999, http_status=500, body=php), timeout_ms=1000)
    assert c.reason == "HTTP 500"
    # Latency beats body.
    c = classify(ProbeOutcome(latency_ms=2000, http_status=200, body=php), timeout_ms=1000)
    assert c.reason == "Response time 2000ms exceeds 1000ms"


def test_missing_body_is_fine() -> None:
    c = classify(ProbeOutcome(latency_ms=5, http_status=204, body=None), timeout_ms=1000)
    assert c.healthy is True


def test_allowed_status_codes_override_range() -> None:
    c = classify(ProbeOutcome(latency_ms=5, http_status=301, body=""), timeout_ms=1000, allowed_status_codes=[200])
    assert c.outcome == UNHEALTHY
    assert c.reason == "HTTP 301"

    c = classify(ProbeOutcome(latency_ms=5, http_status=200, body=""), timeout_ms=1000, allowed_status_codes=[200])
    assert c.healthy is True


def test_malformed_outcome_raises() -> None:
    with pytest.raises(ValueError):
        classify(ProbeOutcome(latency_ms=5), timeout_ms=1000)
    with pytest.raises(ValueError):
        classify(ProbeOutcome(latency_ms=5, http_status=200, transport_error="boom"), timeout_ms=1000)
