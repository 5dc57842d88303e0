from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

import httpx


LOGGER = logging.getLogger("web-health-check")


def redact_webhook_url(url: str) -> str:
    # Slack-style webhook URLs carry the secret in the path.
    try:
        parts = urlsplit(url or "")
    except ValueError:
        return "<invalid>"
    if not parts.netloc:
        return "<unset>"
    return f"{parts.scheme}://{parts.netloc}/<redacted>"


@dataclass(frozen=True)
class WebhookNotifier:
    """
    Single webhook sink. Posts {"text": message}. With no URL configured the
    message is only logged.
    """

    client: httpx.AsyncClient
    webhook_url: str | None = None
    timeout_seconds: float = 15.0

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url)

    async def send(self, message: str) -> tuple[bool, dict[str, Any]]:
        if not self.webhook_url:
            LOGGER.info("Notification (no webhook configured) message=%s", message)
            return False, {"ok": False, "error": "webhook_not_configured"}

        try:
            resp = await self.client.post(self.webhook_url, json={"text": message}, timeout=self.timeout_seconds)
        except Exception as e:
            msg = f"{type(e).__name__}: {e}".replace(self.webhook_url, redact_webhook_url(self.webhook_url))
            return False, {"ok": False, "error": msg}

        ok = 200 <= resp.status_code < 300
        data: dict[str, Any] = {"ok": ok, "status_code": resp.status_code}
        if not ok:
            data["error"] = (resp.text or "")[:300]
        return ok, data


def describe_response(data: dict[str, Any]) -> str:
    safe = {"ok": data.get("ok")}
    if data.get("status_code") is not None:
        safe["status_code"] = data.get("status_code")
    if data.get("error"):
        safe["error"] = data.get("error")
    return json.dumps(safe, ensure_ascii=False)
