from __future__ import annotations

from dataclasses import dataclass, field, replace

from webhealth.checks import Classification
from webhealth.history import HEALTHY, UNHEALTHY, UNKNOWN


ALERT = "alert"
SUSTAINED = "sustained"
RECOVERED = "recovered"


@dataclass(frozen=True)
class EndpointState:
    status: str = UNKNOWN
    last_checked_at: float | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    last_latency_ms: int | None = None


@dataclass(frozen=True)
class StreakThresholds:
    alert_after_failures: int = 1
    sustained_after_failures: int = 5
    recovered_after_successes: int = 10


@dataclass(frozen=True)
class Notification:
    kind: str
    endpoint: str
    message: str
    reason: str | None = None


@dataclass(frozen=True)
class StreakUpdate:
    state: EndpointState
    notifications: list[Notification] = field(default_factory=list)


def build_alert_message(endpoint: str, reason: str | None) -> str:
    return f"🔴 {endpoint} is unhealthy: {reason}"


def build_sustained_message(endpoint: str, reason: str | None, *, failures: int) -> str:
    return f"⚠️ {endpoint} has been unhealthy for {failures} consecutive checks: {reason}"


def build_recovered_message(endpoint: str, *, successes: int) -> str:
    return f"✅ {endpoint} is now healthy after {successes} consecutive successful checks"


def build_startup_message(endpoint_count: int) -> str:
    return f"🚀 Web Health Check System started monitoring {endpoint_count} endpoints"


def update(
    state: EndpointState,
    classification: Classification,
    *,
    endpoint: str,
    now_ts: float,
    latency_ms: int | None,
    thresholds: StreakThresholds = StreakThresholds(),
) -> StreakUpdate:
    """
    Apply one classification to an endpoint's streak state.

    Triggers compare with ==, so each notification fires once per unbroken
    streak.
    """
    notifications: list[Notification] = []
    latency = max(0, int(latency_ms)) if latency_ms is not None else None

    if classification.outcome == HEALTHY:
        successes = int(state.consecutive_successes) + 1
        new_state = replace(
            state,
            status=HEALTHY,
            last_checked_at=float(now_ts),
            last_error=None,
            consecutive_failures=0,
            consecutive_successes=successes,
            last_latency_ms=latency,
        )
        if successes == int(thresholds.recovered_after_successes):
            notifications.append(
                Notification(
                    kind=RECOVERED,
                    endpoint=endpoint,
                    message=build_recovered_message(endpoint, successes=successes),
                )
            )
        return StreakUpdate(state=new_state, notifications=notifications)

    if classification.outcome != UNHEALTHY:
        raise ValueError(f"Invalid classification outcome: {classification.outcome!r}")

    reason = classification.reason
    failures = int(state.consecutive_failures) + 1
    new_state = replace(
        state,
        status=UNHEALTHY,
        last_checked_at=float(now_ts),
        last_error=reason,
        consecutive_failures=failures,
        consecutive_successes=0,
        last_latency_ms=latency,
    )
    if failures == int(thresholds.alert_after_failures):
        notifications.append(
            Notification(kind=ALERT, endpoint=endpoint, message=build_alert_message(endpoint, reason), reason=reason)
        )
    if failures == int(thresholds.sustained_after_failures):
        notifications.append(
            Notification(
                kind=SUSTAINED,
                endpoint=endpoint,
                message=build_sustained_message(endpoint, reason, failures=failures),
                reason=reason,
            )
        )
    return StreakUpdate(state=new_state, notifications=notifications)
