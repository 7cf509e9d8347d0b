"""Wall-clock daily trigger on top of asyncio.

Each registration is a one-shot task that sleeps until the next ``HH:MM`` and
then awaits the callback; the digest re-registers itself after every run.
Sleeping happens in short slices against the wall clock so suspend/resume
and clock changes do not push a run far past its time.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
import itertools
import logging
from typing import Callable, Dict, Optional

from core.errors import SchedulingError
from core.ports import DailyCallback

LOGGER = logging.getLogger(__name__)

MAX_SLEEP_SLICE = 60.0

_token_ids = itertools.count(1)


def parse_hhmm(hhmm: str) -> time:
    hour_text, sep, minute_text = hhmm.strip().partition(":")
    try:
        if not sep:
            raise ValueError("missing ':'")
        return time(int(hour_text), int(minute_text))
    except ValueError as exc:
        raise SchedulingError(f"invalid daily time {hhmm!r}, expected HH:MM") from exc


def next_occurrence(at: time, after: datetime) -> datetime:
    """First local datetime strictly after ``after`` whose clock reads ``at``."""

    after = after.astimezone()
    candidate = datetime.combine(after.date(), at).astimezone()
    if candidate <= after:
        candidate = datetime.combine(after.date() + timedelta(days=1), at).astimezone()
    return candidate


@dataclass(eq=False)
class ScheduleToken:
    due_at: datetime
    id: int = field(default_factory=lambda: next(_token_ids))


class AsyncioDailyScheduler:
    """SchedulerPort implementation; one pending task per token."""

    def __init__(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        now: Callable[[], datetime] = lambda: datetime.now().astimezone(),
    ) -> None:
        self._loop = loop
        self._now = now
        self._tasks: Dict[int, asyncio.Task] = {}

    def schedule_daily(
        self,
        hhmm: str,
        callback: DailyCallback,
        after: Optional[datetime] = None,
    ) -> ScheduleToken:
        at = parse_hhmm(hhmm)
        now = self._now()
        reference = max(after, now) if after is not None else now
        token = ScheduleToken(due_at=next_occurrence(at, reference))

        loop = self._loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError as exc:
                raise SchedulingError("no event loop available for the daily trigger") from exc

        self._tasks[token.id] = loop.create_task(self._wait_and_fire(token, callback))
        LOGGER.info("Daily trigger %s set for %s", token.id, token.due_at.isoformat(timespec="minutes"))
        return token

    def cancel(self, token: object) -> None:
        if not isinstance(token, ScheduleToken):
            return
        task = self._tasks.pop(token.id, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def pending(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def _wait_and_fire(self, token: ScheduleToken, callback: DailyCallback) -> None:
        while True:
            remaining = (token.due_at - self._now()).total_seconds()
            if remaining <= 0:
                break
            await asyncio.sleep(min(remaining, MAX_SLEEP_SLICE))

        self._tasks.pop(token.id, None)
        try:
            await callback(token.due_at)
        except Exception:
            LOGGER.exception("Daily trigger %s failed", token.id)
