from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Iterable

import httpx

from webhealth.history import HEALTHY, UNHEALTHY


PHP_ERROR_MARKER = "A PHP Error was encountered"
USER_AGENT = "WebHealthCheck/1.0"


@dataclass(frozen=True)
class ProbeOutcome:
    latency_ms: int
    http_status: int | None = None
    body: str | None = None
    transport_error: str | None = None


@dataclass(frozen=True)
class Classification:
    outcome: str
    reason: str | None = None

    @property
    def healthy(self) -> bool:
        return self.outcome == HEALTHY


def _status_ok(status: int, allowed_status_codes: Iterable[int] | None) -> bool:
    if allowed_status_codes is not None:
        return status in set(allowed_status_codes)
    # 3xx counts as healthy.
    return 200 <= status <= 399


def classify(
    outcome: ProbeOutcome,
    *,
    timeout_ms: int,
    allowed_status_codes: Iterable[int] | None = None,
) -> Classification:
    """
    Classify one completed probe. Rules are checked in order:
    transport error, status code, response time, PHP error marker in the body.
    """
    has_error = outcome.transport_error is not None
    has_status = outcome.http_status is not None
    if has_error == has_status:
        raise ValueError("ProbeOutcome needs exactly one of transport_error or http_status")

    if has_error:
        return Classification(UNHEALTHY, str(outcome.transport_error))

    status = int(outcome.http_status)
    if not _status_ok(status, allowed_status_codes):
        return Classification(UNHEALTHY, f"HTTP {status}")

    if int(outcome.latency_ms) > int(timeout_ms):
        return Classification(UNHEALTHY, f"Response time {int(outcome.latency_ms)}ms exceeds {int(timeout_ms)}ms")

    if outcome.body and PHP_ERROR_MARKER in outcome.body:
        return Classification(UNHEALTHY, "PHP Error detected in page content")

    return Classification(HEALTHY)


def _elapsed_ms(started: float) -> int:
    return max(0, int(round((time.perf_counter() - started) * 1000.0)))


def _error_text(exc: Exception) -> str:
    msg = str(exc).strip()
    return msg or type(exc).__name__


async def probe(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout_ms: int,
    grace_ms: int = 5000,
) -> ProbeOutcome:
    """
    GET `url`, following redirects, and report the final status code.

    The whole request (connect through full body read) is bounded by
    timeout_ms + grace_ms of wall-clock time. Network failures come back as
    `transport_error`; this never raises for them.
    """
    limit_s = (int(timeout_ms) + max(0, int(grace_ms))) / 1000.0
    started = time.perf_counter()
    try:
        resp = await asyncio.wait_for(
            client.get(
                url,
                follow_redirects=True,
                timeout=limit_s,
                headers={"User-Agent": USER_AGENT},
            ),
            timeout=limit_s,
        )
    except (asyncio.TimeoutError, httpx.TimeoutException):
        return ProbeOutcome(latency_ms=_elapsed_ms(started), transport_error="Request timeout")
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        return ProbeOutcome(latency_ms=_elapsed_ms(started), transport_error=_error_text(exc))

    latency_ms = _elapsed_ms(started)
    try:
        body = resp.text or ""
    except (UnicodeDecodeError, LookupError):
        body = resp.content.decode("utf-8", errors="replace")
    return ProbeOutcome(latency_ms=latency_ms, http_status=resp.status_code, body=body)
