"""Telegram-to-core event mapping adapter.

This keeps Telethon-specific details out of the core pipeline: a group
message becomes raw ``"<sender>: <text>"`` plus the chat title as group hint,
which is exactly what the pipeline's parser expects.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Optional

from telethon.tl.custom import Message

from core.models import RawEvent

LOGGER = logging.getLogger(__name__)


class GroupTitleResolver:
    """Resolve a chat's display title, with a chat_id cache."""

    def __init__(self, client) -> None:
        self._client = client
        self._cache: dict[int, str] = {}

    async def title(self, message: Message) -> str:
        chat_id = message.chat_id
        if chat_id in self._cache:
            return self._cache[chat_id]
        chat = getattr(message, "chat", None)
        if chat is None:
            try:
                chat = await self._client.get_entity(chat_id)
            except Exception:
                LOGGER.warning("Could not resolve chat %s; using its id as group name", chat_id)
                chat = None
        title = getattr(chat, "title", None) or f"chat_id:{chat_id}"
        self._cache[chat_id] = title
        return title


def display_name(sender: Any) -> str:
    """Return the name a group member is shown under."""

    if sender is None:
        return "unknown"
    title = getattr(sender, "title", None)
    if title:
        return str(title)
    first = getattr(sender, "first_name", None)
    last = getattr(sender, "last_name", None)
    if first or last:
        return " ".join(part for part in [first, last] if part)
    username = getattr(sender, "username", None)
    if username:
        return f"@{username}"
    return str(getattr(sender, "id", "unknown"))


async def build_raw_event(
    message: Message,
    resolver: GroupTitleResolver,
    received_at: Optional[datetime] = None,
) -> Optional[RawEvent]:
    """Build a RawEvent from a Telethon Message, or None for text-less messages."""

    text = (message.raw_text or "").strip()
    # Media-only messages without captions carry nothing to classify.
    if not text:
        return None

    sender = await message.get_sender()
    # The first colon separates sender from content, so a colon inside the
    # display name would shift the split.
    name = display_name(sender).replace(":", " ").strip() or "unknown"
    return RawEvent(
        text=f"{name}: {text}",
        group_hint=await resolver.title(message),
        received_at=received_at or datetime.now(timezone.utc),
    )
