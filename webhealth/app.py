from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, PlainTextResponse
from fastapi.templating import Jinja2Templates

from webhealth.config import MonitorConfig
from webhealth.history import format_ts
from webhealth.monitor import (
    MonitorContext,
    announce_startup,
    create_context,
    load_persisted_history,
    run_loop,
)
from webhealth.notify import WebhookNotifier
from webhealth.persistence import PersistenceBackend
from webhealth.report import history_view, status_summary


LOGGER = logging.getLogger("web-health-check")


def create_app(
    config: MonitorConfig,
    *,
    backend: PersistenceBackend | None = None,
    start_monitor: bool = True,
    transport: httpx.AsyncBaseTransport | None = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """
    Dashboard + JSON API. With start_monitor the scheduler loop runs inside
    the app's event loop for the app's lifetime.
    """
    ctx = create_context(config, backend=backend, clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        load_persisted_history(ctx)
        if not start_monitor:
            yield
            return

        LOGGER.info(
            "Starting monitor endpoints=%s interval_seconds=%s timeout_seconds=%s webhook=%s data_dir=%s",
            len(config.endpoints),
            config.check_interval_seconds,
            config.timeout_seconds,
            "enabled" if config.webhook_url else "disabled",
            config.data_dir,
        )
        async with httpx.AsyncClient(transport=transport) as client:
            notifier = WebhookNotifier(client=client, webhook_url=config.webhook_url)
            stop_event = asyncio.Event()
            announce_startup(ctx, notifier)
            loop_task = asyncio.create_task(run_loop(ctx, client, notifier, stop_event=stop_event))
            try:
                yield
            finally:
                LOGGER.info("Shutting down gracefully")
                stop_event.set()
                await asyncio.gather(loop_task, return_exceptions=True)

    app = FastAPI(title="Web Health Check", version="1.0.0", lifespan=lifespan)
    app.state.ctx = ctx
    app.state.templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

    def _get_ctx() -> MonitorContext:
        return app.state.ctx

    def _history_or_404(endpoint: str) -> dict[str, Any]:
        c = _get_ctx()
        if endpoint not in c.states:
            raise HTTPException(status_code=404, detail="Domain not found")
        return history_view(
            endpoint,
            c.store.history(endpoint),
            now_ts=c.clock(),
            window_seconds=c.config.grid_window_seconds,
            slot_seconds=c.config.grid_slot_seconds,
        )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True, "ts": time.time()}

    @app.get("/api/status")
    async def api_status() -> dict[str, Any]:
        c = _get_ctx()
        return status_summary(c.snapshot_states(), next_check_ts=c.next_check_ts)

    @app.get("/api/history/{endpoint:path}")
    async def api_history(endpoint: str) -> dict[str, Any]:
        return _history_or_404(endpoint)

    @app.get("/", response_class=HTMLResponse)
    async def status_page(req: Request):
        c = _get_ctx()
        summary = status_summary(c.snapshot_states(), next_check_ts=c.next_check_ts)
        return app.state.templates.TemplateResponse(
            req,
            "status.html",
            {
                "summary": summary,
                "endpoint_count": len(c.config.endpoints),
                "check_interval_minutes": c.config.check_interval_seconds / 60.0,
                "webhook_configured": bool(c.config.webhook_url),
                "generated_at": format_ts(c.clock()),
            },
        )

    @app.get("/history/{endpoint:path}", response_class=HTMLResponse)
    async def history_page(endpoint: str, req: Request):
        try:
            view = _history_or_404(endpoint)
        except HTTPException:
            return PlainTextResponse("Domain not found", status_code=404)
        return app.state.templates.TemplateResponse(req, "history.html", {"view": view})

    return app
