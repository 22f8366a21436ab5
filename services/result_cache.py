"""Resolution result cache — time-bounded memoization keyed by query signature.

Entries are written once per ``(text, entity type filter, limit)`` and never
mutated.  Staleness is checked lazily on lookup; there is no sweeper.  The
clock is injectable so TTL behaviour can be tested without sleeping.

No locking: a racing duplicate computation simply overwrites its own bucket
with an equivalent or newer value.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass

from models.entity import ResolvedContext

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300


@dataclass(frozen=True)
class CacheEntry:
    result: ResolvedContext
    timestamp: float


class ResultCache:
    """In-memory TTL cache for :class:`ResolvedContext` results."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[Hashable, CacheEntry] = {}
        self._ttl = ttl_seconds
        self._clock = clock

    def _is_expired(self, entry: CacheEntry) -> bool:
        return (self._clock() - entry.timestamp) > self._ttl

    def get(self, key: Hashable) -> ResolvedContext | None:
        """Return a fresh cached result, or ``None`` on miss / expiry."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_expired(entry):
            # Ignored rather than trusted; the next write replaces it
            self._entries.pop(key, None)
            logger.debug("Cache entry expired: %s", key)
            return None
        return entry.result

    def set(self, key: Hashable, result: ResolvedContext) -> None:
        self._entries[key] = CacheEntry(result=result, timestamp=self._clock())

    def clear(self) -> None:
        """Drop every entry, e.g. after a write elsewhere in the system."""
        count = len(self._entries)
        self._entries.clear()
        if count:
            logger.info("Cleared %d cached context resolutions", count)

    @property
    def size(self) -> int:
        """Number of entries currently stored (may include expired)."""
        return len(self._entries)
