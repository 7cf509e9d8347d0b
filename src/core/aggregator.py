"""Daily digest of important messages.

The aggregator reads one calendar day of important messages from the store,
summarizes them per group and hands the digest to the notifier. It then
reschedules itself for the next day no matter how the run went.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from datetime import date, datetime, time, timedelta
import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from core.config import ClassificationConfig, ClassificationMode
from core.errors import AggregationError, GroupwatchError, PersistenceError, SchedulingError
from core.models import DailySummary, GroupSummary, Message
from core.ports import AIServicePort, ConfigStorePort, NotifierPort, SchedulerPort, StoragePort
from core.result import Outcome

LOGGER = logging.getLogger(__name__)

PREVIEW_MESSAGES = 3
PREVIEW_CHARS = 20


def day_window(day: date) -> Tuple[datetime, datetime]:
    """Return ``[start of day, start of next day)`` in local time."""

    start = datetime.combine(day, time.min).astimezone()
    end = datetime.combine(day + timedelta(days=1), time.min).astimezone()
    return start, end


def group_messages(messages: Sequence[Message]) -> "OrderedDict[str, List[Message]]":
    """Group by group name, keeping first-seen group order and message order."""

    grouped: "OrderedDict[str, List[Message]]" = OrderedDict()
    for message in messages:
        grouped.setdefault(message.group, []).append(message)
    return grouped


def heuristic_summary(messages: Sequence[Message]) -> str:
    """Local summary used whenever the AI summary is missing."""

    speakers = len({message.sender for message in messages})
    preview = "; ".join(
        f"{message.sender}: {message.content[:PREVIEW_CHARS]}"
        for message in messages[:PREVIEW_MESSAGES]
    )
    return f"{speakers} speakers. {preview}"


def build_digest(
    day: date,
    messages: Sequence[Message],
    ai_summaries: Optional[Dict[str, str]] = None,
) -> DailySummary:
    """Build a digest whose counts come from ``messages`` only.

    AI text is attached where the AI covered a group; any group it skipped
    gets the heuristic summary.
    """

    ai_summaries = ai_summaries or {}
    per_group = tuple(
        GroupSummary(
            group=group,
            count=len(items),
            summary=ai_summaries.get(group) or heuristic_summary(items),
        )
        for group, items in group_messages(messages).items()
    )
    return DailySummary(date=day, total_important=len(messages), per_group=per_group)


class DailyAggregator:
    """Single-flight digest runner that keeps itself scheduled."""

    def __init__(
        self,
        storage: StoragePort,
        notifier: NotifierPort,
        config_store: ConfigStorePort,
        ai: Optional[AIServicePort] = None,
        scheduler: Optional[SchedulerPort] = None,
        digest_time: str = "20:00",
        retention_days: Optional[int] = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._storage = storage
        self._notifier = notifier
        self._config_store = config_store
        self._ai = ai
        self._scheduler = scheduler
        self._digest_time = digest_time
        self._retention_days = retention_days
        self._today = today
        self._token: Optional[object] = None
        self._inflight: Optional[asyncio.Future] = None
        self._inflight_day: Optional[date] = None

    def start(self) -> None:
        """Register the first wall-clock trigger."""

        self._reschedule(after=None)

    def stop(self) -> None:
        if self._scheduler is not None and self._token is not None:
            self._scheduler.cancel(self._token)
        self._token = None

    async def run_now(self) -> DailySummary:
        """Manual trigger for today's digest."""

        return await self.run(self._today())

    async def run(self, as_of: date) -> DailySummary:
        """Produce, deliver and reschedule the digest for ``as_of``.

        A trigger for the same day that arrives while a run is in progress is
        coalesced onto that run and receives its digest. A run for another
        day waits for the current one to finish first.
        """

        joined = await self._join_or_wait(as_of)
        if joined is not None:
            return await asyncio.shield(joined)
        return await self._launch(as_of, after=None)

    async def _on_trigger(self, due_at: datetime) -> None:
        if await self._join_or_wait(due_at.date()) is not None:
            # The running digest reschedules itself when it finishes.
            LOGGER.info("Scheduled digest skipped; a run for %s is already in progress", due_at.date())
            return
        await self._launch(due_at.date(), after=due_at)

    async def _join_or_wait(self, as_of: date) -> Optional[asyncio.Future]:
        """Return the in-flight run for ``as_of``, or None once no run is in flight."""

        while self._inflight is not None and not self._inflight.done():
            if self._inflight_day == as_of:
                LOGGER.info("Digest run for %s already in progress; joining it", as_of)
                return self._inflight
            LOGGER.info("Digest for %s waits for the run for %s", as_of, self._inflight_day)
            await asyncio.wait([self._inflight])
        return None

    async def _launch(self, as_of: date, after: Optional[datetime]) -> DailySummary:
        self._inflight_day = as_of
        self._inflight = asyncio.ensure_future(self._run_once(as_of, after=after))
        return await asyncio.shield(self._inflight)

    async def _run_once(self, as_of: date, after: Optional[datetime]) -> DailySummary:
        try:
            return await self._produce(as_of)
        finally:
            self._reschedule(after=after)
            self._purge_expired()

    async def _produce(self, as_of: date) -> DailySummary:
        start, end = day_window(as_of)
        try:
            messages = self._storage.query_important(start, end)
        except PersistenceError:
            LOGGER.exception("Could not read important messages for %s", as_of)
            return DailySummary(date=as_of, total_important=0)

        if not messages:
            LOGGER.info("No important messages on %s; nothing to send", as_of)
            return DailySummary(date=as_of, total_important=0)

        config = self._config_store.get()
        outcome = await self._summarize(messages, as_of, config)

        def heuristic_only(error: GroupwatchError) -> DailySummary:
            LOGGER.warning("AI summary unavailable for %s, using heuristic: %s", as_of, error)
            return build_digest(as_of, messages)

        digest = outcome.map(
            lambda summaries: build_digest(
                as_of, messages, {entry.group: entry.summary for entry in summaries}
            )
        ).or_else(heuristic_only)

        try:
            await self._notifier.notify_daily_summary(digest)
        except Exception:
            LOGGER.exception("Digest for %s was built but could not be delivered", as_of)
            return digest
        LOGGER.info(
            "Digest for %s sent: %s important messages in %s groups",
            as_of,
            digest.total_important,
            len(digest.per_group),
        )
        return digest

    async def _summarize(
        self,
        messages: Sequence[Message],
        as_of: date,
        config: ClassificationConfig,
    ) -> Outcome[List[GroupSummary]]:
        if (
            self._ai is None
            or not config.ai_configured
            or config.mode is ClassificationMode.KEYWORD_ONLY
        ):
            return Outcome.fail(AggregationError("AI summarization is not configured"))
        outcome = await self._ai.summarize(messages, as_of, config)
        if outcome.is_ok:
            return outcome
        return Outcome.fail(AggregationError(str(outcome.error)))

    def _reschedule(self, after: Optional[datetime]) -> None:
        if self._scheduler is None:
            return
        try:
            if self._token is not None:
                self._scheduler.cancel(self._token)
            self._token = self._scheduler.schedule_daily(self._digest_time, self._on_trigger, after=after)
        except SchedulingError:
            self._token = None
            LOGGER.exception("Could not schedule the daily digest; manual runs still work")

    def _purge_expired(self) -> None:
        if not self._retention_days:
            return
        cutoff = datetime.now().astimezone() - timedelta(days=self._retention_days)
        try:
            removed = self._storage.delete_older_than(cutoff)
        except PersistenceError:
            LOGGER.exception("Retention cleanup failed")
            return
        LOGGER.info("Retention cleanup removed %s messages", removed)
