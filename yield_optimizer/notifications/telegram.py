"""Telegram notification service."""
import html
import logging
import ssl

import aiohttp
import certifi

from ..config import TelegramConfig

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


def format_message(message: str, subject: str = "") -> str:
    """Escape text for HTML parse mode, bolding the subject line when present."""
    body = html.escape(message)
    if subject:
        return f"<b>{html.escape(subject)}</b>\n{body}"
    return body


class TelegramNotifier:
    """Deliver events through two bots: unmuted alerts and silent logs."""

    def __init__(self, config: TelegramConfig) -> None:
        self.alert_bot_token = config.alert_bot_token
        self.log_bot_token = config.log_bot_token
        self.chat_id = config.chat_id

    @property
    def channel(self) -> str:
        return "telegram"

    async def _send_message(self, text: str, bot_token: str, silent: bool = False) -> bool:
        if not bot_token or not self.chat_id:
            logger.warning("Telegram credentials not configured")
            return False

        url = f"{TELEGRAM_API_URL}/bot{bot_token}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_notification": silent,
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.post(url, json=payload) as response:
                if response.status == 200:
                    return True
                logger.error("Failed to send Telegram message: HTTP %s", response.status)
                return False

    async def send_alert(self, message: str, subject: str = "") -> bool:
        if await self._send_message(format_message(message, subject), self.alert_bot_token):
            logger.info("Telegram alert sent")
            return True
        return False

    async def send_log(self, message: str, silent: bool = True) -> bool:
        # Fall back to the alert bot when no separate log bot is configured.
        token = self.log_bot_token or self.alert_bot_token
        return await self._send_message(format_message(message), token, silent=silent)
