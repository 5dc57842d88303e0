from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable

import httpx

from webhealth.checks import classify, probe
from webhealth.config import MonitorConfig
from webhealth.history import RetentionStore, Sample, format_ts
from webhealth.notify import WebhookNotifier, describe_response
from webhealth.persistence import FileBackend, PersistenceBackend
from webhealth.state import EndpointState, Notification, StreakUpdate, build_startup_message, update


LOGGER = logging.getLogger("web-health-check")


@dataclass
class MonitorContext:
    """
    Everything the monitoring process owns: per-endpoint state, history,
    locks and the scheduled time of the next pass. Passed explicitly to every
    operation; there is no module-level state.
    """

    config: MonitorConfig
    store: RetentionStore
    states: dict[str, EndpointState]
    locks: dict[str, asyncio.Lock]
    clock: Callable[[], float] = time.time
    next_check_ts: float | None = None
    notification_tasks: set[asyncio.Task] = field(default_factory=set)

    def snapshot_states(self) -> dict[str, EndpointState]:
        # EndpointState is frozen; a shallow copy is a consistent snapshot.
        return dict(self.states)


def create_context(
    config: MonitorConfig,
    *,
    backend: PersistenceBackend | None = None,
    clock: Callable[[], float] = time.time,
) -> MonitorContext:
    store = RetentionStore(
        backend if backend is not None else FileBackend(config.data_dir),
        retention_seconds=config.retention_seconds,
        clock=clock,
    )
    return MonitorContext(
        config=config,
        store=store,
        states={endpoint: EndpointState() for endpoint in config.endpoints},
        locks={endpoint: asyncio.Lock() for endpoint in config.endpoints},
        clock=clock,
    )


def load_persisted_history(ctx: MonitorContext) -> None:
    backend = ctx.store.backend
    if isinstance(backend, FileBackend):
        try:
            backend.ensure_writable()
        except OSError as exc:
            LOGGER.warning(
                "Data directory not writable; history will only be kept in memory path=%s error=%s",
                backend.data_dir,
                exc,
            )

    LOGGER.info("Loading persisted health data endpoints=%s", len(ctx.config.endpoints))
    ctx.store.load_all(ctx.config.endpoints, now_ts=ctx.clock())


async def _deliver(notifier: WebhookNotifier, message: str, *, kind: str, endpoint: str | None) -> None:
    try:
        ok, resp = await notifier.send(message)
    except Exception:
        LOGGER.exception("Notification delivery crashed kind=%s endpoint=%s", kind, endpoint)
        return
    if ok:
        LOGGER.info("Notification sent kind=%s endpoint=%s", kind, endpoint)
    elif notifier.configured:
        LOGGER.warning(
            "Notification delivery failed kind=%s endpoint=%s response=%s",
            kind,
            endpoint,
            describe_response(resp),
        )


def _schedule(ctx: MonitorContext, coro) -> asyncio.Task:
    task = asyncio.create_task(coro)
    ctx.notification_tasks.add(task)
    task.add_done_callback(ctx.notification_tasks.discard)
    return task


def emit_notifications(ctx: MonitorContext, notifier: WebhookNotifier, notifications: list[Notification]) -> None:
    for n in notifications:
        _schedule(ctx, _deliver(notifier, n.message, kind=n.kind, endpoint=n.endpoint))


def announce_startup(ctx: MonitorContext, notifier: WebhookNotifier) -> asyncio.Task:
    message = build_startup_message(len(ctx.config.endpoints))
    return _schedule(ctx, _deliver(notifier, message, kind="startup", endpoint=None))


async def drain_notifications(ctx: MonitorContext, *, timeout_seconds: float = 5.0) -> None:
    pending = set(ctx.notification_tasks)
    if not pending:
        return
    done, still_pending = await asyncio.wait(pending, timeout=timeout_seconds)
    for task in still_pending:
        task.cancel()
    if still_pending:
        LOGGER.warning("Dropped undelivered notifications count=%s", len(still_pending))
        await asyncio.gather(*still_pending, return_exceptions=True)


async def check_endpoint(
    ctx: MonitorContext,
    client: httpx.AsyncClient,
    notifier: WebhookNotifier,
    endpoint: str,
) -> StreakUpdate | None:
    """
    Probe one endpoint and apply the result. Returns None when the previous
    probe of this endpoint is still in flight.
    """
    lock = ctx.locks[endpoint]
    if lock.locked():
        LOGGER.info("Check already running for endpoint=%s; skipping", endpoint)
        return None

    cfg = ctx.config
    async with lock:
        outcome = await probe(client, endpoint, timeout_ms=cfg.timeout_ms, grace_ms=cfg.probe_grace_ms)

        # No awaits from here until the state and notifications are committed.
        classification = classify(outcome, timeout_ms=cfg.timeout_ms, allowed_status_codes=cfg.allowed_status_codes)
        now_ts = ctx.clock()
        result = update(
            ctx.states[endpoint],
            classification,
            endpoint=endpoint,
            now_ts=now_ts,
            latency_ms=outcome.latency_ms,
            thresholds=cfg.thresholds,
        )
        ctx.states[endpoint] = result.state
        emit_notifications(ctx, notifier, result.notifications)

        if not classification.healthy:
            LOGGER.warning(
                "Endpoint unhealthy endpoint=%s reason=%s fail_streak=%s",
                endpoint,
                classification.reason,
                result.state.consecutive_failures,
            )

        append = asyncio.ensure_future(
            asyncio.to_thread(ctx.store.append, endpoint, Sample(ts=now_ts, outcome=classification.outcome), now_ts)
        )
        try:
            await asyncio.shield(append)
        except asyncio.CancelledError:
            # Let a started append finish before giving up the lock.
            await append
            raise
        return result


async def run_check_pass(ctx: MonitorContext, client: httpx.AsyncClient, notifier: WebhookNotifier) -> None:
    endpoints = list(ctx.config.endpoints)
    LOGGER.info("Running health checks endpoints=%s", len(endpoints))
    semaphore = asyncio.Semaphore(ctx.config.check_concurrency)

    async def _safe_check(endpoint: str) -> None:
        async with semaphore:
            try:
                await check_endpoint(ctx, client, notifier, endpoint)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                LOGGER.exception("Endpoint check crashed endpoint=%s error=%s", endpoint, exc)

    await asyncio.gather(*(_safe_check(endpoint) for endpoint in endpoints))


async def run_loop(
    ctx: MonitorContext,
    client: httpx.AsyncClient,
    notifier: WebhookNotifier,
    *,
    stop_event: asyncio.Event,
) -> None:
    """
    Start a check pass every interval until stop_event is set.

    Passes are not awaited before the next tick, so a slow endpoint never
    delays the schedule; the per-endpoint lock skips overlapping probes.
    """
    interval = float(ctx.config.check_interval_seconds)
    pass_tasks: set[asyncio.Task] = set()
    try:
        while not stop_event.is_set():
            started = ctx.clock()
            ctx.next_check_ts = started + interval
            task = asyncio.create_task(run_check_pass(ctx, client, notifier))
            pass_tasks.add(task)
            task.add_done_callback(pass_tasks.discard)
            LOGGER.info("Next check scheduled for next_check=%s", format_ts(ctx.next_check_ts))

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
    finally:
        for task in list(pass_tasks):
            task.cancel()
        if pass_tasks:
            await asyncio.gather(*pass_tasks, return_exceptions=True)
        await drain_notifications(ctx)
        LOGGER.info("Monitor loop stopped")
