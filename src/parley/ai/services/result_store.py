"""In-memory key/value store for search results attached to a message."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict

__all__ = ["ResultStore"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float | None


class ResultStore:
    """Thread-safe store whose entries expire after ``ttl`` seconds.

    The chat view reads web and knowledge search results from here while the
    reply is rendered, keyed by ``web-search-<message id>`` and
    ``knowledge-search-<message id>``.
    """

    def __init__(self, *, ttl: float | None = 30 * 60, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: Any, *, ttl: float | None = None) -> None:
        """Store ``value`` and drop whatever has expired in the meantime."""

        now = self._clock()
        lifetime = self._ttl if ttl is None else ttl
        expires_at = now + lifetime if lifetime is not None else None
        with self._lock:
            self._drop_expired(now)
            self._entries[key] = _Entry(value=value, expires_at=expires_at)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if entry.expires_at is not None and entry.expires_at <= self._clock():
                del self._entries[key]
                return default
            return entry.value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _drop_expired(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.expires_at is not None and entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            LOGGER.debug("Purged %d expired search result(s)", len(expired))


_MISSING = object()
