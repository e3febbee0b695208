"""Telegram operator notifications."""
from __future__ import annotations

import html
import logging
import ssl

import aiohttp
import certifi

from ..config import TelegramConfig

logger = logging.getLogger(__name__)

API_URL = "https://api.telegram.org"
MAX_MESSAGE_LENGTH = 4096


class TelegramNotifier:
    """Alerts go to the unmuted bot; per-cycle logs go to the log bot."""

    def __init__(self, config: TelegramConfig, timeout: int = 10) -> None:
        self.alert_bot_token = config.alert_bot_token
        self.log_bot_token = config.log_bot_token or config.alert_bot_token
        self.chat_id = config.chat_id
        self.timeout = timeout

    async def _send_message(self, text: str, bot_token: str, silent: bool = False) -> bool:
        if not bot_token or not self.chat_id:
            logger.warning("Telegram credentials not configured")
            return False

        # Messages carry raw addresses and tx hashes; escape before HTML parsing
        text = html.escape(text)[:MAX_MESSAGE_LENGTH]
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_notification": silent,
            "disable_web_page_preview": True,
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        async with aiohttp.ClientSession(connector=connector, timeout=timeout) as session:
            async with session.post(
                f"{API_URL}/bot{bot_token}/sendMessage", json=payload
            ) as response:
                if response.status != 200:
                    logger.error("Telegram sendMessage failed: HTTP %s", response.status)
                    return False
                return True

    async def send_alert(self, message: str, subject: str = "") -> bool:
        """Send an operator alert through the unmuted bot."""
        if await self._send_message(message, self.alert_bot_token, silent=False):
            logger.info("Telegram alert sent")
            return True
        return False

    async def send_log(self, message: str, silent: bool = True) -> bool:
        if await self._send_message(message, self.log_bot_token, silent=silent):
            logger.debug("Telegram log sent")
            return True
        return False
