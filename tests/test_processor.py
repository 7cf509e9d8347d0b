from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import threading
from typing import Optional

from core.classifier import ImportanceClassifier
from core.config import ClassificationConfig, ClassificationMode, KeywordRule
from core.errors import PersistenceError
from core.models import Message, RawEvent
from core.processor import EventState, IngestionPipeline
from core.rate_limit import RateLimiter

AT = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeConfigStore:
    def __init__(self, config: ClassificationConfig) -> None:
        self.config = config

    def get(self) -> ClassificationConfig:
        return self.config

    def set(self, config: ClassificationConfig) -> None:
        self.config = config

    def subscribe(self, callback):
        return lambda: None


class FakeStorage:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.messages: dict[str, Message] = {}
        self.marked: list[str] = []

    def append(self, message: Message) -> None:
        if self.fail:
            raise PersistenceError("disk full")
        self.messages[message.id] = message

    def mark_notified(self, message_id: str) -> None:
        if self.fail:
            raise PersistenceError("disk full")
        self.marked.append(message_id)


class FakeNotifier:
    def __init__(self) -> None:
        self.important: list[Message] = []

    async def notify_important(self, message: Message) -> None:
        self.important.append(message)

    async def notify_daily_summary(self, summary) -> None:
        raise AssertionError("not used")


class ExplodingClassifier:
    async def classify(self, message: Message, config: ClassificationConfig) -> Message:
        raise RuntimeError("boom")


class Ticker:
    """Monotonic clock that advances a full second per reading."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


def _config(**overrides) -> ClassificationConfig:
    values = {"mode": ClassificationMode.KEYWORD_ONLY, "rules": (KeywordRule("urgent", weight=0.6),)}
    values.update(overrides)
    return ClassificationConfig(**values)


def _pipeline(
    storage: Optional[FakeStorage] = None,
    notifier: Optional[FakeNotifier] = None,
    config: Optional[ClassificationConfig] = None,
    clock=None,
    classifier=None,
) -> IngestionPipeline:
    return IngestionPipeline(
        config_store=FakeConfigStore(config or _config()),
        classifier=classifier or ImportanceClassifier(),
        storage=storage or FakeStorage(),
        notifier=notifier or FakeNotifier(),
        rate_limiter=RateLimiter(0.5),
        clock=clock or Ticker(),
    )


def test_important_message_is_stored_and_notified_once() -> None:
    storage = FakeStorage()
    notifier = FakeNotifier()
    pipeline = _pipeline(storage, notifier)

    state = asyncio.run(pipeline.process(RawEvent("Alice: urgent deploy", "Team", AT)))

    assert state is EventState.DONE
    [stored] = storage.messages.values()
    assert stored.is_important
    assert [message.id for message in notifier.important] == [stored.id]
    assert storage.marked == [stored.id]


def test_unimportant_message_is_stored_without_alert() -> None:
    storage = FakeStorage()
    notifier = FakeNotifier()
    pipeline = _pipeline(storage, notifier)

    asyncio.run(pipeline.process(RawEvent("Alice: lunch?", "Team", AT)))

    assert len(storage.messages) == 1
    assert notifier.important == []
    assert storage.marked == []


def test_duplicate_event_is_dropped() -> None:
    storage = FakeStorage()
    notifier = FakeNotifier()
    pipeline = _pipeline(storage, notifier)
    event = RawEvent("Alice: urgent deploy", "Team", AT)

    async def scenario() -> list[EventState]:
        return [await pipeline.process(event), await pipeline.process(event)]

    assert asyncio.run(scenario()) == [EventState.DONE, EventState.DROPPED]
    assert len(storage.messages) == 1
    assert len(notifier.important) == 1
    assert pipeline.stats["dropped_duplicate"] == 1


def test_events_inside_rate_window_are_dropped() -> None:
    storage = FakeStorage()
    pipeline = _pipeline(storage, clock=lambda: 42.0)

    async def scenario() -> list[EventState]:
        return [
            await pipeline.process(RawEvent("Alice: one", "Team", AT)),
            await pipeline.process(RawEvent("Bob: two", "Team", AT)),
        ]

    assert asyncio.run(scenario()) == [EventState.DONE, EventState.DROPPED]
    assert pipeline.stats["dropped_rate_limited"] == 1
    assert len(storage.messages) == 1


def test_unparseable_event_is_dropped() -> None:
    storage = FakeStorage()
    pipeline = _pipeline(storage)

    state = asyncio.run(pipeline.process(RawEvent("no separator", "Team", AT)))

    assert state is EventState.DROPPED
    assert pipeline.stats["dropped_parse"] == 1
    assert storage.messages == {}


def test_unmonitored_group_is_dropped() -> None:
    storage = FakeStorage()
    pipeline = _pipeline(storage, config=_config(monitored_groups=frozenset({"Ops"})))

    async def scenario() -> list[EventState]:
        return [
            await pipeline.process(RawEvent("Alice: urgent", "Team", AT)),
            await pipeline.process(RawEvent("Alice: urgent", "Ops", AT)),
        ]

    assert asyncio.run(scenario()) == [EventState.DROPPED, EventState.DONE]
    assert pipeline.stats["dropped_unmonitored"] == 1
    assert [message.group for message in storage.messages.values()] == ["Ops"]


def test_store_failure_still_notifies() -> None:
    notifier = FakeNotifier()
    pipeline = _pipeline(FakeStorage(fail=True), notifier)

    state = asyncio.run(pipeline.process(RawEvent("Alice: urgent deploy", "Team", AT)))

    assert state is EventState.DONE
    assert len(notifier.important) == 1
    assert pipeline.stats["persistence_errors"] == 2


def test_config_change_applies_to_next_message() -> None:
    store = FakeConfigStore(_config())
    notifier = FakeNotifier()
    pipeline = IngestionPipeline(
        config_store=store,
        classifier=ImportanceClassifier(),
        storage=FakeStorage(),
        notifier=notifier,
        clock=Ticker(),
    )

    async def scenario() -> None:
        await pipeline.process(RawEvent("Alice: urgent one", "Team", AT))
        store.set(_config(importance_threshold=0.9))
        await pipeline.process(RawEvent("Alice: urgent two", "Team", AT))

    asyncio.run(scenario())
    assert [message.content for message in notifier.important] == ["urgent one"]


def test_submit_from_another_thread() -> None:
    storage = FakeStorage()
    notifier = FakeNotifier()
    pipeline = _pipeline(storage, notifier)

    async def scenario() -> None:
        loop = asyncio.get_running_loop()
        pipeline.bind(loop)
        worker = threading.Thread(
            target=pipeline.submit,
            args=("Alice: urgent from thread", "Team", AT),
        )
        worker.start()
        await loop.run_in_executor(None, worker.join)
        await asyncio.sleep(0)
        await pipeline.drain()

    asyncio.run(scenario())
    assert len(storage.messages) == 1
    assert len(notifier.important) == 1


def test_concurrent_duplicate_submits_notify_once() -> None:
    notifier = FakeNotifier()
    pipeline = _pipeline(notifier=notifier)

    async def scenario() -> None:
        pipeline.bind(asyncio.get_running_loop())
        for _ in range(5):
            pipeline.submit("Alice: urgent deploy", "Team", AT)
        await pipeline.drain()

    asyncio.run(scenario())
    assert len(notifier.important) == 1
    assert pipeline.stats["dropped_duplicate"] == 4


def test_failure_in_one_event_does_not_stop_others() -> None:
    pipeline = _pipeline(classifier=ExplodingClassifier())

    async def scenario() -> None:
        pipeline.bind(asyncio.get_running_loop())
        pipeline.submit("Alice: one", "Team", AT)
        pipeline.submit("Bob: two", "Team", AT)
        await pipeline.drain()

    asyncio.run(scenario())
    assert pipeline.stats["failed"] == 2


def test_notify_lock_stays_shared_while_callers_wait() -> None:
    pipeline = _pipeline()
    active = 0
    overlaps: list[int] = []

    async def scenario() -> None:
        tasks: list[asyncio.Task] = []

        async def hold(spawn_third: bool) -> None:
            nonlocal active
            async with pipeline._notify_lock("m1"):
                active += 1
                overlaps.append(active)
                await asyncio.sleep(0.01)
                if spawn_third:
                    # Arrives after the release has been handed to a waiter.
                    tasks.append(asyncio.ensure_future(hold(False)))
                active -= 1

        first = asyncio.ensure_future(hold(True))
        second = asyncio.ensure_future(hold(False))
        await asyncio.gather(first, second)
        await asyncio.gather(*tasks)

    asyncio.run(scenario())
    assert overlaps == [1, 1, 1]
    assert pipeline._notify_locks == {}


def test_stats_are_exact_under_concurrent_submits() -> None:
    pipeline = _pipeline()
    threads, per_thread = 8, 50

    def burst(worker: int) -> None:
        for index in range(per_thread):
            pipeline.submit(f"User{worker}: message {index}", "Team", AT)

    async def scenario() -> None:
        loop = asyncio.get_running_loop()
        pipeline.bind(loop)
        workers = [threading.Thread(target=burst, args=(worker,)) for worker in range(threads)]
        for worker in workers:
            worker.start()
        for worker in workers:
            await loop.run_in_executor(None, worker.join)
        await asyncio.sleep(0)
        await pipeline.drain()

    asyncio.run(scenario())
    assert pipeline.stats["received"] == threads * per_thread
    assert pipeline.stats["processed"] == threads * per_thread
