from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from adapters.sqlite_storage import SQLiteStorage
from core.errors import PersistenceError
from core.models import ClassificationMethod, Message

BASE = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _storage(tmp_path) -> SQLiteStorage:
    storage = SQLiteStorage(str(tmp_path / "groupwatch.db"))
    storage.init_db()
    return storage


def _message(content: str, minutes: int = 0, important: bool = True) -> Message:
    return Message(
        group="Team",
        sender="Alice",
        content=content,
        received_at=BASE + timedelta(minutes=minutes),
        is_important=important,
        importance_score=0.75 if important else 0.1,
        method=ClassificationMethod.BOTH,
        matched_keywords=("会议", "urgent"),
        reason="keyword(s): 会议, urgent",
    )


def test_append_then_get_round_trips_every_field(tmp_path) -> None:
    storage = _storage(tmp_path)
    message = _message("今晚会议延后")

    storage.append(message)

    assert storage.get(message.id) == message
    assert storage.get("missing") is None


def test_mark_notified_is_one_way(tmp_path) -> None:
    storage = _storage(tmp_path)
    message = _message("urgent")
    storage.append(message)

    storage.mark_notified(message.id)
    storage.mark_notified(message.id)
    # Re-appending the unnotified copy must not reset the flag.
    storage.append(message)

    assert storage.get(message.id).notified
    assert storage.count() == 1


def test_append_keeps_notified_from_a_later_copy(tmp_path) -> None:
    storage = _storage(tmp_path)
    message = _message("urgent")
    storage.append(message)
    storage.append(replace(message, notified=True))
    assert storage.get(message.id).notified


def test_query_important_is_half_open_and_ordered(tmp_path) -> None:
    storage = _storage(tmp_path)
    inside_late = _message("late", minutes=30)
    inside_early = _message("early", minutes=0)
    at_end = _message("at end", minutes=60)
    unimportant = _message("chatter", minutes=10, important=False)
    for message in (inside_late, inside_early, at_end, unimportant):
        storage.append(message)

    found = storage.query_important(BASE, BASE + timedelta(minutes=60))

    assert [message.content for message in found] == ["early", "late"]


def test_counts_and_deletes(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.append(_message("old", minutes=-60 * 24 * 8))
    storage.append(_message("new"))
    storage.append(_message("chatter", minutes=1, important=False))

    assert storage.count() == 3
    assert storage.count_important() == 2

    assert storage.delete_older_than(BASE - timedelta(days=7)) == 1
    assert storage.count() == 2

    assert storage.delete_all() == 2
    assert storage.count() == 0


def test_sqlite_failures_become_persistence_errors(tmp_path) -> None:
    storage = SQLiteStorage(str(tmp_path / "missing-dir" / "groupwatch.db"))
    with pytest.raises(PersistenceError):
        storage.init_db()


def test_writes_before_init_fail_as_persistence_errors(tmp_path) -> None:
    storage = SQLiteStorage(str(tmp_path / "fresh.db"))
    with pytest.raises(PersistenceError):
        storage.append(_message("urgent"))
