"""Keyed stores for per-user process state."""

import time
from typing import Callable, Dict, Generic, Iterator, Optional, Protocol, Tuple, TypeVar

V = TypeVar("V")

class KeyedStore(Protocol[V]):
    """The only operations the conversation and coordinator rely on."""

    def get(self, key: str) -> Optional[V]: ...

    def set(self, key: str, value: V) -> None: ...

    def delete(self, key: str) -> None: ...

class InMemoryStore(Generic[V]):
    """Dict-backed store with optional TTL eviction.

    Entries expire `ttl_seconds` after their last `set`. Expired entries are
    dropped lazily on access, and `set` sweeps the whole store at most once
    per TTL interval so keys that are never read again do not pile up.
    """

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[V, float]] = {}
        self._last_sweep = clock()

    def _expired(self, stored_at: float) -> bool:
        return self.ttl_seconds is not None and self._clock() - stored_at >= self.ttl_seconds

    def get(self, key: str) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self._expired(stored_at):
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: V) -> None:
        now = self._clock()
        if self.ttl_seconds is not None and now - self._last_sweep >= self.ttl_seconds:
            self.evict_expired()
            self._last_sweep = now
        self._entries[key] = (value, now)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        self.evict_expired()
        return len(self._entries)

    def keys(self) -> Iterator[str]:
        self.evict_expired()
        return iter(list(self._entries))

    def evict_expired(self) -> int:
        expired = [k for k, (_, stored_at) in self._entries.items() if self._expired(stored_at)]
        for key in expired:
            del self._entries[key]
        return len(expired)
