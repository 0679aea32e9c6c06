"""
Telegram notifications.

Messages are sent with MarkdownV2 first. When Telegram rejects the formatting
(HTTP 400 "can't parse entities") the same text is sent once more without a
parse mode.
"""

import re
from typing import Any, Dict, Optional, Sequence

import aiohttp

from core.config.settings import TelegramSettings
from core.logging import get_logger
from core.trading.models import ExecutionResult, Leg, Signal
from core.utils.exceptions import NotificationError
from .sink import NotificationOutcome, NotificationSink, build_summary

_MARKDOWN_V2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")


def escape_markdown_v2(text: str) -> str:
    return _MARKDOWN_V2_SPECIAL.sub(r"\\\1", text)


def is_formatting_rejection(status: int, description: str) -> bool:
    text = (description or "").lower()
    return status == 400 and "parse entities" in text


class TelegramClient:
    """Minimal Bot API client: sendMessage only."""

    def __init__(self, settings: TelegramSettings, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self._session = session
        self._owns_session = session is None

    @property
    def configured(self) -> bool:
        return bool(self.settings.bot_token and self.settings.channel_id)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.timeout_seconds)
            )
            self._owns_session = True
        return self._session

    async def send_message(self, text: str, markdown: bool = True) -> Dict[str, Any]:
        """Send `text` to the configured channel. Raises NotificationError on failure."""
        body: Dict[str, Any] = {
            "chat_id": self.settings.channel_id,
            "text": escape_markdown_v2(text) if markdown else text,
            "disable_web_page_preview": True,
        }
        if markdown:
            body["parse_mode"] = "MarkdownV2"

        url = f"{self.settings.api_base_url.rstrip('/')}/bot{self.settings.bot_token}/sendMessage"
        session = await self._get_session()
        try:
            async with session.post(url, json=body) as response:
                data = await response.json(content_type=None)
                status = response.status
        except Exception as e:
            raise NotificationError(f"Telegram request failed: {e}") from e

        data = data or {}
        if status >= 400 or not data.get("ok"):
            description = data.get("description") or "Unknown Telegram API error"
            raise NotificationError(
                f"Telegram API error: {description}",
                status_code=status,
                formatting_rejected=markdown and is_formatting_rejection(status, description),
                details={"response": data},
            )
        return data

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


class TelegramNotificationSink(NotificationSink):

    def __init__(self, client: TelegramClient, enabled: bool = True):
        self.client = client
        self.enabled = enabled
        self.logger = get_logger(__name__, component="notifications")

    async def notify(self, title: str, signal: Signal, legs: Sequence[Leg],
                     results: Sequence[ExecutionResult]) -> NotificationOutcome:
        if not self.enabled or not self.client.configured:
            self.logger.info("Telegram not configured, skipping notification", title=title)
            return NotificationOutcome(sent=False, skipped=True)

        text = build_summary(title, signal, legs, results)
        plain_fallback = False
        try:
            try:
                data = await self.client.send_message(text, markdown=True)
            except NotificationError as e:
                if not e.formatting_rejected:
                    raise
                self.logger.warning("Telegram rejected MarkdownV2, retrying as plain text",
                                    error=e.message)
                plain_fallback = True
                data = await self.client.send_message(text, markdown=False)
        except NotificationError as e:
            self.logger.error("Telegram notification failed", title=title, error=e.message,
                              status_code=e.status_code)
            return NotificationOutcome(sent=False, plain_text_fallback=plain_fallback, error=e.message)
        except Exception as e:
            self.logger.error("Telegram notification failed", title=title, error=str(e))
            return NotificationOutcome(sent=False, plain_text_fallback=plain_fallback, error=str(e))

        message_id = (data.get("result") or {}).get("message_id")
        self.logger.info("Telegram notification sent", title=title, message_id=message_id,
                         plain_text_fallback=plain_fallback)
        return NotificationOutcome(sent=True, plain_text_fallback=plain_fallback, message_id=message_id)
