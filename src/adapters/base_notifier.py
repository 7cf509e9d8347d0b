"""Idempotent delivery shared by every notifier adapter.

The pipeline cannot write "sent" and "marked notified" atomically, so the
notifier is the place that absorbs a repeated call: an alert is delivered at
most once per message id, and an identical digest for a date at most once.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Set

from adapters.notification_formatting import format_digest, format_important
from core.models import DailySummary, Message

LOGGER = logging.getLogger(__name__)

# Delivered ids are only needed while a retry is plausible.
MAX_REMEMBERED_ALERTS = 10000


class IdempotentNotifier:
    """NotifierPort base; subclasses implement ``_deliver(text)``."""

    format_mode = "plain"

    def __init__(self, snippet_chars: int = 400) -> None:
        self._snippet_chars = snippet_chars
        self._sent_messages: Set[str] = set()
        self._sent_digests: Set[DailySummary] = set()
        self._lock = asyncio.Lock()

    async def _deliver(self, text: str) -> None:
        raise NotImplementedError

    async def notify_important(self, message: Message) -> None:
        async with self._lock:
            if message.id in self._sent_messages:
                LOGGER.debug("Alert for %s already delivered", message.id)
                return
            await self._deliver(format_important(message, self._snippet_chars, self.format_mode))
            if len(self._sent_messages) >= MAX_REMEMBERED_ALERTS:
                self._sent_messages.clear()
            self._sent_messages.add(message.id)

    async def notify_daily_summary(self, summary: DailySummary) -> None:
        async with self._lock:
            if summary in self._sent_digests:
                LOGGER.debug("Digest for %s already delivered", summary.date)
                return
            await self._deliver(format_digest(summary, self.format_mode))
            self._sent_digests.add(summary)


class LogNotifier(IdempotentNotifier):
    """Writes alerts to the application log; handy without a Telegram chat."""

    async def _deliver(self, text: str) -> None:
        LOGGER.info("%s", text)
