from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from adapters.telegram_mapper import GroupTitleResolver, build_raw_event, display_name
from core.parser import parse_message


class DummyChat:
    def __init__(self, title: "str | None" = None) -> None:
        self.title = title


class DummyUser:
    def __init__(
        self,
        first_name: "str | None" = None,
        last_name: "str | None" = None,
        username: "str | None" = None,
        user_id: int = 7,
    ) -> None:
        self.first_name = first_name
        self.last_name = last_name
        self.username = username
        self.id = user_id


class DummyMessage:
    def __init__(self, *, chat_id: int, text: str, sender=None, chat: "DummyChat | None" = None) -> None:
        self.chat_id = chat_id
        self.raw_text = text
        self.chat = chat
        self._sender = sender

    async def get_sender(self):
        return self._sender


class DummyClient:
    def __init__(self, entity=None, fail: bool = False) -> None:
        self.entity = entity
        self.fail = fail
        self.lookups = 0

    async def get_entity(self, chat_id: int):
        self.lookups += 1
        if self.fail:
            raise ValueError("unknown chat")
        return self.entity


AT = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_build_raw_event_joins_sender_and_text() -> None:
    message = DummyMessage(
        chat_id=-100123,
        text="release at 18:00",
        sender=DummyUser(first_name="Alice", last_name="Smith"),
        chat=DummyChat("Backend Team"),
    )
    resolver = GroupTitleResolver(DummyClient())

    raw = asyncio.run(build_raw_event(message, resolver, AT))

    assert raw.text == "Alice Smith: release at 18:00"
    assert raw.group_hint == "Backend Team"
    assert raw.received_at == AT
    parsed = parse_message(raw.text, raw.group_hint, raw.received_at)
    assert parsed.sender == "Alice Smith"
    assert parsed.content == "release at 18:00"


def test_colon_in_sender_name_does_not_shift_the_split() -> None:
    message = DummyMessage(
        chat_id=1,
        text="hello",
        sender=DummyUser(first_name="Ops:Bot"),
        chat=DummyChat("Ops"),
    )

    raw = asyncio.run(build_raw_event(message, GroupTitleResolver(DummyClient()), AT))

    assert parse_message(raw.text, raw.group_hint, AT).content == "hello"


def test_messages_without_text_are_skipped() -> None:
    message = DummyMessage(chat_id=1, text="   ", sender=DummyUser(first_name="A"), chat=DummyChat("G"))
    assert asyncio.run(build_raw_event(message, GroupTitleResolver(DummyClient()), AT)) is None


def test_resolver_fetches_and_caches_missing_chats() -> None:
    client = DummyClient(entity=DummyChat("Fetched"))
    resolver = GroupTitleResolver(client)
    message = DummyMessage(chat_id=42, text="x")

    async def scenario() -> list[str]:
        return [await resolver.title(message), await resolver.title(message)]

    assert asyncio.run(scenario()) == ["Fetched", "Fetched"]
    assert client.lookups == 1


def test_resolver_falls_back_to_chat_id() -> None:
    resolver = GroupTitleResolver(DummyClient(fail=True))
    title = asyncio.run(resolver.title(DummyMessage(chat_id=42, text="x")))
    assert title == "chat_id:42"


def test_display_name_fallbacks() -> None:
    assert display_name(None) == "unknown"
    assert display_name(DummyChat("Channel Name")) == "Channel Name"
    assert display_name(DummyUser(username="alice")) == "@alice"
    assert display_name(DummyUser(user_id=99)) == "99"
