"""Deduplication helpers (core domain)."""

from __future__ import annotations

import hashlib
from datetime import datetime

DEFAULT_CAPACITY = 1000


def compute_fingerprint(group: str, sender: str, content: str, received_at: datetime) -> str:
    """Return a stable hash for one raw event.

    The timestamp is truncated to whole seconds so sub-second jitter from a
    redelivered event still collides with the original.
    """

    payload = "\n".join([group, sender, content, str(int(received_at.timestamp()))])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class DedupCache:
    """Bounded in-memory set of recently seen fingerprints.

    Overflow clears the whole set before the new key goes in. That loses
    precision right after a clear, and restarts forget everything; both are
    accepted sources of a rare repeat notification.

    Not thread-safe on its own; the pipeline guards it with its admission lock.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("dedup capacity must be at least 1")
        self._capacity = capacity
        self._keys: set[str] = set()

    def __len__(self) -> int:
        return len(self._keys)

    def seen(self, key: str) -> bool:
        return key in self._keys

    def remember(self, key: str) -> None:
        if key in self._keys:
            return
        if len(self._keys) + 1 > self._capacity:
            self._keys.clear()
        self._keys.add(key)
