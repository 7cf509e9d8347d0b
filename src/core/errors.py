"""Exception hierarchy shared by the core and adapters.

Adapters translate library-specific failures (sqlite3, aiohttp, timeouts)
into these types so the core only ever handles its own vocabulary.
"""

from __future__ import annotations


class GroupwatchError(Exception):
    """Base class for every error raised on purpose by groupwatch."""


class ParseError(GroupwatchError):
    """Raw event text does not have the ``"<sender>: <content>"`` shape."""


class ClassificationError(GroupwatchError):
    """The remote classification service could not produce a result."""


class ClassificationTimeout(ClassificationError):
    """The remote call exceeded its deadline."""


class ClassificationServiceError(ClassificationError):
    """Transport failure, bad status, or a response we could not decode."""


class PersistenceError(GroupwatchError):
    """A store read or write failed."""


class SchedulingError(GroupwatchError):
    """A wall-clock trigger could not be registered."""


class AggregationError(GroupwatchError):
    """Digest summarization failed."""
