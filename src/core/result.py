"""Success-or-error value used at every degradation point.

Callers chain a fallback with ``or_else`` instead of nesting try/except, so
"always produce a result" stays visible where the fallback is wired.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from core.errors import GroupwatchError

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: Optional[T] = None
    error: Optional[GroupwatchError] = None

    @classmethod
    def ok(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, error: GroupwatchError) -> "Outcome[T]":
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def map(self, func: Callable[[T], U]) -> "Outcome[U]":
        if self.error is None:
            return Outcome.ok(func(self.value))  # type: ignore[arg-type]
        return Outcome.fail(self.error)

    def or_else(self, fallback: Callable[[GroupwatchError], T]) -> T:
        """Return the value, or the fallback computed from the error."""

        if self.error is None:
            return self.value  # type: ignore[return-value]
        return fallback(self.error)
