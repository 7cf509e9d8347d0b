"""Telegram notification adapter for Saved Messages.

Formats a human-readable Markdown message and sends it to Saved Messages.
"""

from __future__ import annotations

from adapters.base_notifier import IdempotentNotifier


class TelegramSavedMessagesNotifier(IdempotentNotifier):
    """Notifier adapter that sends alerts and digests to the user's Saved Messages."""

    format_mode = "markdown"

    def __init__(self, client, snippet_chars: int = 400) -> None:
        super().__init__(snippet_chars)
        self._client = client

    async def _deliver(self, text: str) -> None:
        await self._client.send_message("me", text, parse_mode="md")
