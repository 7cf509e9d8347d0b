"""Telegram Bot API notification adapter.

Uses the Bot API for delivery so notifications can be routed via a bot chat.
"""

from __future__ import annotations

import aiohttp

from adapters.base_notifier import IdempotentNotifier

BOT_API_TIMEOUT_SECONDS = 10


class TelegramBotNotifier(IdempotentNotifier):
    """Notifier adapter that sends messages via the Telegram Bot API."""

    format_mode = "html"

    def __init__(self, bot_token: str, chat_id: str, snippet_chars: int = 400) -> None:
        super().__init__(snippet_chars)
        self._bot_token = bot_token
        self._chat_id = chat_id

    def _endpoint(self) -> str:
        # The Bot API endpoint is deterministic and derived from the token.
        return f"https://api.telegram.org/bot{self._bot_token}/sendMessage"

    async def _deliver(self, text: str) -> None:
        payload = {
            "chat_id": self._chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        timeout = aiohttp.ClientTimeout(total=BOT_API_TIMEOUT_SECONDS)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self._endpoint(), json=payload) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise RuntimeError(f"Bot API error {resp.status}: {body}")
