"""In-memory TTL cache for upstream reads.

Entries are partitioned by end-user: the end-user ID is the first component
of every key, and a secondary index maps each end-user to the keys it owns so
a mutation can drop that end-user's reads without scanning the whole store.
"""

import json
import logging
import time
from collections import OrderedDict, defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

KEY_SEPARATOR = "::"


@dataclass
class CacheEntry:
    """A cached value with its absolute expiry time.

    Args:
        key: Cache key.
        value: JSON-serializable payload.
        expires_at: Clock reading after which the entry is stale.
        end_user_id: Owner of the entry.
    """

    key: str
    value: Any
    expires_at: float
    end_user_id: str | None = None

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class Cache:
    """Bounded key/value store with per-entry TTL.

    When the store is full, expired entries are purged first and then the
    oldest inserted entry is evicted.
    """

    def __init__(
        self,
        default_ttl: float = 1440 * 60,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            default_ttl: Default time-to-live in seconds.
            max_size: Maximum number of entries.
            clock: Monotonic time source.
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._keys_by_user: dict[str, set[str]] = defaultdict(set)
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def generate_key(
        endpoint: str,
        params: dict[str, Any] | None,
        end_user_id: str,
    ) -> str:
        """Build a deterministic cache key.

        Params are serialized with sorted keys so insertion order does not
        matter. The separator is assumed not to occur in end-user IDs.
        """
        serialized = json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)
        return KEY_SEPARATOR.join((end_user_id, endpoint, serialized))

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None when absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            logger.debug(f"Cache MISS: {key}")
            return None

        if entry.is_expired(self._clock()):
            self._remove(key)
            self._misses += 1
            logger.debug(f"Cache EXPIRED: {key}")
            return None

        self._hits += 1
        logger.debug(f"Cache HIT: {key}")
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """Store a value.

        Args:
            key: Cache key (see generate_key).
            value: Payload to store.
            ttl: Seconds until expiry; defaults to default_ttl.

        Returns:
            True if stored.
        """
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return False

        if key in self._entries:
            self._remove(key)
        elif len(self._entries) >= self.max_size:
            self._make_room()

        end_user_id = key.split(KEY_SEPARATOR, 1)[0]
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            expires_at=self._clock() + ttl,
            end_user_id=end_user_id,
        )
        self._keys_by_user[end_user_id].add(key)
        logger.debug(f"Cache SET: {key}")
        return True

    def delete(self, key: str) -> bool:
        """Remove one key. Returns True if it was present."""
        if key not in self._entries:
            return False
        self._remove(key)
        return True

    def invalidate_pattern(self, pattern: str) -> int:
        """Remove every entry whose key contains ``pattern``.

        Returns:
            Number of entries removed.
        """
        matching = [key for key in self._entries if pattern in key]
        for key in matching:
            self._remove(key)
        if matching:
            logger.debug(
                f"Cache INVALIDATED: {len(matching)} keys matching pattern '{pattern}'"
            )
        return len(matching)

    def invalidate_end_user(self, end_user_id: str) -> int:
        """Remove every entry owned by one end-user.

        Returns:
            Number of entries removed.
        """
        keys = self._keys_by_user.pop(end_user_id, set())
        for key in keys:
            self._entries.pop(key, None)
        if keys:
            logger.debug(f"Cache INVALIDATED: {len(keys)} keys for end-user {end_user_id}")
        return len(keys)

    def clear(self) -> None:
        """Remove everything."""
        self._entries.clear()
        self._keys_by_user.clear()
        logger.debug("Cache CLEARED")

    def stats(self) -> dict[str, int]:
        """Return hit/miss counters and current size."""
        return {
            "hits": self._hits,
            "misses": self._misses,
            "keys": len(self._entries),
            "max_size": self.max_size,
        }

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        owned = self._keys_by_user.get(entry.end_user_id)
        if owned is not None:
            owned.discard(key)
            if not owned:
                del self._keys_by_user[entry.end_user_id]

    def _make_room(self) -> None:
        now = self._clock()
        for key in [k for k, e in self._entries.items() if e.is_expired(now)]:
            self._remove(key)
            logger.debug(f"Cache EXPIRED: {key}")

        while len(self._entries) >= self.max_size:
            oldest = next(iter(self._entries))
            self._remove(oldest)
            logger.debug(f"Cache EVICTED: {oldest}")
