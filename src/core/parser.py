"""Turn raw ``"<sender>: <content>"`` text into a Message."""

from __future__ import annotations

from datetime import datetime

from core.errors import ParseError
from core.models import Message


def parse_message(raw_text: str, group_hint: str, received_at: datetime) -> Message:
    """Split on the first colon and build an unclassified Message.

    Raw text carries no timestamp, so ``received_at`` is the ingestion time.
    """

    sender, sep, content = raw_text.partition(":")
    if not sep or not sender:
        raise ParseError(f"no sender separator in {raw_text[:40]!r}")

    sender = sender.strip()
    content = content.strip()
    if not sender:
        raise ParseError("sender is blank")
    if not content:
        raise ParseError(f"empty content from {sender!r}")

    return Message(
        group=group_hint.strip(),
        sender=sender,
        content=content,
        received_at=received_at,
    )
