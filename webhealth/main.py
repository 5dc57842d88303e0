from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path

import httpx
import uvicorn

from webhealth.app import create_app
from webhealth.config import DEFAULT_CONFIG_PATH, MonitorConfig, build_config, load_config
from webhealth.monitor import create_context, drain_notifications, load_persisted_history, run_check_pass
from webhealth.notify import WebhookNotifier
from webhealth.report import status_summary


LOGGER = logging.getLogger("web-health-check")


async def run_once(config: MonitorConfig) -> int:
    ctx = create_context(config)
    load_persisted_history(ctx)
    async with httpx.AsyncClient() as client:
        notifier = WebhookNotifier(client=client, webhook_url=config.webhook_url)
        await run_check_pass(ctx, client, notifier)
        await drain_notifications(ctx)

    summary = status_summary(ctx.snapshot_states(), next_check_ts=None)
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    unhealthy = [e for e, s in summary["status"].items() if s["status"] != "healthy"]
    return 1 if unhealthy else 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Web Health Check monitor and dashboard")
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help="Path to YAML config",
    )
    parser.add_argument("--once", action="store_true", help="Run one check pass, print the status and exit")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (INFO, WARNING, ...)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    # Webhook URLs embed their secret.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    config_path = Path(args.config)
    try:
        raw = load_config(config_path) if config_path.exists() else {}
        config = build_config(raw)
    except ValueError as exc:
        LOGGER.error("Invalid configuration path=%s error=%s", config_path, exc)
        return 2

    if args.once:
        return asyncio.run(run_once(config))

    app = create_app(config)
    LOGGER.info("Dashboard available at http://%s:%s", config.host, config.port)
    uvicorn.run(app, host=config.host, port=config.port, log_level=str(args.log_level).lower())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
