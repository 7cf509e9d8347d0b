"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional, Tuple
import uuid


class ClassificationMethod(str, Enum):
    """Which scorer actually produced a message's importance."""

    NONE = "none"
    KEYWORD = "keyword"
    AI = "ai"
    BOTH = "both"


@dataclass(frozen=True)
class RawEvent:
    """Ephemeral event handed over by the event source; never persisted."""

    text: str
    group_hint: str
    received_at: datetime


@dataclass(frozen=True)
class Message:
    """A parsed chat message and its classification.

    Everything except ``notified`` is fixed once classification ran;
    ``notified`` only ever moves from False to True.
    """

    group: str
    sender: str
    content: str
    received_at: datetime
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    is_important: bool = False
    importance_score: float = 0.0
    method: ClassificationMethod = ClassificationMethod.NONE
    matched_keywords: Tuple[str, ...] = ()
    reason: str = ""
    notified: bool = False


@dataclass(frozen=True)
class KeywordScore:
    """Result of scoring one message against the keyword rules."""

    score: float
    matched_keywords: Tuple[str, ...]
    matched_texts: Tuple[str, ...]
    reason: str
    sender_allowed: bool
    is_important: bool


@dataclass(frozen=True)
class AIVerdict:
    """Importance verdict returned by the remote classifier."""

    is_important: bool
    score: float
    reason: str


@dataclass(frozen=True)
class GroupSummary:
    group: str
    count: int
    summary: str


@dataclass(frozen=True)
class DailySummary:
    """Per-day rollup; counts always add up to ``total_important``."""

    date: date
    total_important: int
    per_group: Tuple[GroupSummary, ...] = ()

    def __post_init__(self) -> None:
        counted = sum(entry.count for entry in self.per_group)
        if counted != self.total_important:
            raise ValueError(
                f"Digest for {self.date} is inconsistent: groups sum to {counted}, "
                f"total is {self.total_important}"
            )

    def group(self, name: str) -> Optional[GroupSummary]:
        for entry in self.per_group:
            if entry.group == name:
                return entry
        return None
