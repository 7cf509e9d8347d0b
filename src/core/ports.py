"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, notification, the remote AI
service, configuration and scheduling so that the core can be reused with
different backends.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence

from core.config import ClassificationConfig
from core.models import AIVerdict, DailySummary, GroupSummary, Message
from core.result import Outcome


class StoragePort(Protocol):
    """Message log operations. Failures surface as PersistenceError."""

    def append(self, message: Message) -> None:
        ...

    def mark_notified(self, message_id: str) -> None:
        ...

    def get(self, message_id: str) -> Optional[Message]:
        ...

    def query_important(self, from_ts: datetime, to_ts: datetime) -> List[Message]:
        ...

    def delete_older_than(self, ts: datetime) -> int:
        ...

    def delete_all(self) -> int:
        ...

    def count(self) -> int:
        ...

    def count_important(self) -> int:
        ...


class NotifierPort(Protocol):
    """Delivery of alerts; both calls must be idempotent per id / date."""

    async def notify_important(self, message: Message) -> None:
        ...

    async def notify_daily_summary(self, summary: DailySummary) -> None:
        ...


class AIServicePort(Protocol):
    """Remote classifier. Never raises; failures come back as Outcome errors."""

    async def classify(self, message: Message, config: ClassificationConfig) -> Outcome[AIVerdict]:
        ...

    async def summarize(
        self,
        messages: Sequence[Message],
        day: date,
        config: ClassificationConfig,
    ) -> Outcome[List[GroupSummary]]:
        ...


class ConfigStorePort(Protocol):
    def get(self) -> ClassificationConfig:
        ...

    def set(self, config: ClassificationConfig) -> None:
        ...

    def subscribe(self, callback: Callable[[ClassificationConfig], None]) -> Callable[[], None]:
        ...


# Scheduled callbacks receive the wall-clock time they were due at.
DailyCallback = Callable[[datetime], Awaitable[Any]]


class SchedulerPort(Protocol):
    def schedule_daily(
        self,
        hhmm: str,
        callback: DailyCallback,
        after: Optional[datetime] = None,
    ) -> object:
        ...

    def cancel(self, token: object) -> None:
        ...
