"""
NodeGate - Token Cache
========================
In-memory cache mapping a session token to its resolved principal, so that
authenticated requests do not hit the session store every time.

Freshness rules:
    - An entry is fresh while  now - timestamp < ttl  (60 seconds by default).
    - Staleness is checked on every read. A stale entry is reported as a miss
      but stays in place until the next set() for that token overwrites it.
    - Capacity is bounded. When full, the least recently used entry is
      dropped. purge_expired() sweeps stale entries on demand.

Clears win over in-flight resolutions:
    A resolver takes a snapshot() before reading the session store and
    passes it to set(since=...). clear() leaves a tombstone carrying a
    sequence number; set() skips the write when the token was cleared after
    the snapshot. Tombstones are kept for one TTL.

        seq = cache.snapshot()
        record = await store.find(token)      # logout may run here
        cache.set(token, ..., since=seq)      # no-op if it did

One instance is created by the application factory and injected into the
SessionManager.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable

DEFAULT_TTL_SECONDS = 60.0
DEFAULT_MAX_ENTRIES = 10000


@dataclass(frozen=True)
class TokenCacheEntry:
    valid: bool
    address: str
    user_id: str
    allowed: bool
    is_admin: bool
    timestamp: float = field(default=0.0)


def looks_like_jwt(token: str | None) -> bool:
    """Cheap shape check: three dot-separated segments."""
    return bool(token) and token.count(".") == 2


class TokenCache:
    """
    Thread-safe TTL + LRU cache of token resolutions.

    Attributes:
        ttl:         Freshness window in seconds.
        max_entries: Capacity before least recently used entries are evicted.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, TokenCacheEntry]" = OrderedDict()
        # token -> (clear sequence number, clear time), oldest first
        self._tombstones: "OrderedDict[str, tuple[int, float]]" = OrderedDict()
        self._clear_seq = 0
        self._lock = threading.Lock()

    def get(self, token: str | None) -> TokenCacheEntry | None:
        """
        Return the cached entry for a token if present and fresh.

        Malformed tokens are always a miss. Stale entries are not removed.
        """
        if not looks_like_jwt(token):
            return None

        with self._lock:
            entry = self._entries.get(token)
            if entry is None:
                return None
            if self._clock() - entry.timestamp >= self.ttl:
                return None
            self._entries.move_to_end(token)
            return entry

    def snapshot(self) -> int:
        """Sequence number to pass to set(since=...) after a slow lookup."""
        with self._lock:
            return self._clear_seq

    def set(
        self,
        token: str,
        *,
        valid: bool,
        address: str,
        user_id: str,
        allowed: bool,
        is_admin: bool,
        since: int | None = None,
    ) -> TokenCacheEntry | None:
        """
        Store a resolution with a fresh timestamp, replacing any prior entry.

        Args:
            since: snapshot() taken before the resolution started. When the
                   token was cleared after it, nothing is stored.

        Returns:
            The stored entry, or None when the token is malformed or was
            cleared after ``since``.
        """
        if not looks_like_jwt(token):
            return None

        with self._lock:
            if since is not None:
                tombstone = self._tombstones.get(token)
                if tombstone is not None and tombstone[0] > since:
                    return None

            entry = TokenCacheEntry(
                valid=valid,
                address=address,
                user_id=user_id,
                allowed=allowed,
                is_admin=is_admin,
                timestamp=self._clock(),
            )
            self._entries[token] = entry
            self._entries.move_to_end(token)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
            return entry

    def clear(self, token: str | None) -> None:
        """Drop a token immediately (logout, refresh)."""
        if not token:
            return
        with self._lock:
            self._entries.pop(token, None)

            now = self._clock()
            self._clear_seq += 1
            self._tombstones[token] = (self._clear_seq, now)
            self._tombstones.move_to_end(token)
            while self._tombstones:
                _, (_, cleared_at) = next(iter(self._tombstones.items()))
                if now - cleared_at < self.ttl:
                    break
                self._tombstones.popitem(last=False)

    def purge_expired(self) -> int:
        """
        Remove every stale entry.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            now = self._clock()
            stale = [
                token for token, entry in self._entries.items()
                if now - entry.timestamp >= self.ttl
            ]
            for token in stale:
                del self._entries[token]
            return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
            self._tombstones.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
