"""Telegram Bot API calls made during setup and teardown."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ingestctl.timeouts import HTTP_CLIENT_TIMEOUT_S

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"

# Secret Manager key (before the product prefix) holding the bot token
TOKEN_SECRET = "TELEGRAM_BOT_TOKEN"


class TelegramBot:
    """Webhook management for the customer's bot."""

    def __init__(
        self,
        token: str,
        timeout: float = HTTP_CLIENT_TIMEOUT_S,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.token = token.strip()
        self.timeout = timeout
        self.transport = transport

    def _call(self, method: str, params: Optional[dict] = None) -> Optional[str]:
        """Call a Bot API method. Returns None on success, else the error description."""
        url = f"{TELEGRAM_API}/bot{self.token}/{method}"
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.get(url, params=params)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            return str(e)
        if data.get("ok"):
            return None
        return data.get("description") or f"HTTP {response.status_code}"

    def set_webhook(self, url: str) -> Optional[str]:
        error = self._call("setWebhook", {"url": url})
        if error:
            logger.warning("Telegram setWebhook failed: %s", error)
        return error

    def delete_webhook(self) -> Optional[str]:
        error = self._call("deleteWebhook")
        if error:
            logger.warning("Telegram deleteWebhook failed: %s", error)
        return error
