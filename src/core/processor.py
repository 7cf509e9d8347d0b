"""Core message ingestion pipeline.

This module is integration-agnostic. It only relies on ports for storage,
notifications and configuration, enabling other event sources or adapters
without changes here.

Every event walks a strict order:
1) Parse the raw text (drop on ParseError)
2) Skip groups that are not monitored
3) Dedup check on the event fingerprint, then remember it
4) Global rate check
5) Classify (AI failures degrade to keywords inside the classifier)
6) Persist unconditionally
7) Notify once if important, then mark notified

Steps 1-4 are cheap and run on the caller's thread under a single lock so
two concurrent deliveries of the same event cannot both pass the dedup
check. Steps 5-7 run as an independent asyncio task so a slow remote call
never stalls delivery.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
import logging
import threading
import time
from typing import AsyncIterator, Callable, Dict, Optional, Set, Tuple

from core.classifier import ImportanceClassifier
from core.config import ClassificationConfig
from core.dedup import DedupCache, compute_fingerprint
from core.errors import ParseError, PersistenceError
from core.models import Message, RawEvent
from core.parser import parse_message
from core.ports import ConfigStorePort, NotifierPort, StoragePort
from core.rate_limit import RateLimiter

LOGGER = logging.getLogger(__name__)


class EventState(str, Enum):
    """Terminal state of one event."""

    DROPPED = "dropped"
    DONE = "done"


class IngestionPipeline:
    """Orchestrates parsing, dedup, rate limiting, classification, persistence and alerts."""

    def __init__(
        self,
        config_store: ConfigStorePort,
        classifier: ImportanceClassifier,
        storage: StoragePort,
        notifier: NotifierPort,
        dedup: Optional[DedupCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config_store = config_store
        self._classifier = classifier
        self._storage = storage
        self._notifier = notifier
        self._dedup = dedup or DedupCache()
        self._rate_limiter = rate_limiter or RateLimiter()
        self._clock = clock
        # Guards the dedup cache and the rate limiter together.
        self._admission_lock = threading.Lock()
        self._notify_locks: Dict[str, asyncio.Lock] = {}
        # Holders plus waiters per id; a lock is dropped only when this hits zero.
        self._notify_users: Counter = Counter()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Set[asyncio.Task] = set()
        self.stats: Counter = Counter()
        # Submit threads and the loop both count; every increment goes through _count.
        self._stats_lock = threading.Lock()

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Attach the event loop that runs classification work."""

        self._loop = loop

    def submit(self, raw_text: str, group_hint: str, received_at: datetime) -> None:
        """Fire-and-forget entry point, callable from any thread."""

        if self._loop is None:
            raise RuntimeError("IngestionPipeline.bind() must be called before submit()")

        admitted = self._admit(RawEvent(raw_text, group_hint, received_at))
        if admitted is None:
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._spawn(admitted)
        else:
            self._loop.call_soon_threadsafe(self._spawn, admitted)

    async def process(self, event: RawEvent) -> EventState:
        """Run one event through every step inline and report where it ended."""

        admitted = self._admit(event)
        if admitted is None:
            return EventState.DROPPED
        return await self._complete(*admitted)

    async def drain(self) -> None:
        """Wait for every dispatched unit of work to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, admitted: Tuple[Message, ClassificationConfig]) -> None:
        task = asyncio.ensure_future(self._run_isolated(*admitted))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self.stats[key] += 1

    def _drop(self, reason: str, detail: str) -> None:
        self._count(f"dropped_{reason}")
        LOGGER.debug("Dropped event (%s): %s", reason, detail)

    def _admit(self, event: RawEvent) -> Optional[Tuple[Message, ClassificationConfig]]:
        # Config is read once per event and carried through classification.
        config = self._config_store.get()

        with self._admission_lock:
            self._count("received")
            try:
                message = parse_message(event.text, event.group_hint, event.received_at)
            except ParseError as exc:
                self._drop("parse", str(exc))
                return None

            if not config.is_monitored(message.group):
                self._drop("unmonitored", message.group)
                return None

            fingerprint = compute_fingerprint(
                message.group, message.sender, message.content, message.received_at
            )
            if self._dedup.seen(fingerprint):
                self._drop("duplicate", f"{message.group}/{message.sender}")
                return None
            self._dedup.remember(fingerprint)

            if not self._rate_limiter.allow(self._clock()):
                self._drop("rate_limited", f"{message.group}/{message.sender}")
                return None

        return message, config

    async def _run_isolated(self, message: Message, config: ClassificationConfig) -> None:
        try:
            await self._complete(message, config)
        except Exception:
            self._count("failed")
            LOGGER.exception("Error while processing message from %s", message.group)

    def _persist(self, action: Callable[..., object], *args: object) -> bool:
        try:
            action(*args)
        except PersistenceError:
            self._count("persistence_errors")
            LOGGER.error("Dropping store write %s", getattr(action, "__name__", action), exc_info=True)
            return False
        return True

    @asynccontextmanager
    async def _notify_lock(self, message_id: str) -> AsyncIterator[None]:
        lock = self._notify_locks.setdefault(message_id, asyncio.Lock())
        self._notify_users[message_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._notify_users[message_id] -= 1
            if self._notify_users[message_id] <= 0:
                del self._notify_users[message_id]
                self._notify_locks.pop(message_id, None)

    async def _complete(self, message: Message, config: ClassificationConfig) -> EventState:
        classified = await self._classifier.classify(message, config)
        self._persist(self._storage.append, classified)
        self._count("processed")

        if classified.is_important and not classified.notified:
            async with self._notify_lock(classified.id):
                await self._notifier.notify_important(classified)
                # Delivery and the notified flag cannot be written atomically;
                # notifiers absorb a repeat call for the same id.
                self._persist(self._storage.mark_notified, classified.id)
            self._count("notified")
            LOGGER.info(
                "Important message in %s from %s (score %.2f, %s)",
                classified.group,
                classified.sender,
                classified.importance_score,
                classified.method.value,
            )

        return EventState.DONE
