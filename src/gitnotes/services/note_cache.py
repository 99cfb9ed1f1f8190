"""Read-through caches for note content and previews.

Both caches are keyed by NoteKey and filled from the working tree on a
miss. Writers invalidate; readers never repopulate an entry with content
they loaded before an invalidation (see ``LruTtlCache.get_or_load``).
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

from gitnotes.models.schema import NoteKey

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


def truncate_preview(content: str, length: int = 200) -> str:
    """Plain-truncation preview: the first ``length`` characters."""
    return content[:length].rstrip()


class LruTtlCache(Generic[K, V]):
    """Thread-safe LRU map whose entries also expire after a fixed TTL.

    Eviction only saves memory; a miss is always answered by the loader.
    """

    def __init__(
        self,
        max_entries: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._data: "OrderedDict[K, Tuple[V, float]]" = OrderedDict()
        self._lock = threading.Lock()
        # Bumped by every invalidation; a load may only be stored if the
        # epoch did not move while it ran.
        self._epoch = 0
        self._stats: Dict[str, int] = {
            "hits": 0,
            "misses": 0,
            "stores": 0,
            "evictions": 0,
            "expired": 0,
            "invalidations": 0,
            "discarded_loads": 0,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: K) -> bool:
        with self._lock:
            return self._lookup_unlocked(key) is not None

    def get(self, key: K) -> Optional[V]:
        """Cached value, or None on a miss. Never loads."""
        with self._lock:
            entry = self._lookup_unlocked(key)
            if entry is None:
                self._stats["misses"] += 1
                return None
            self._stats["hits"] += 1
            return entry

    def get_or_load(self, key: K, loader: Callable[[K], Optional[V]]) -> Optional[V]:
        """Cached value, or the loader's result (stored unless None).

        The loader runs outside the lock. If the key space was invalidated
        while it ran, its result is returned to this caller but not stored,
        so a load that raced a write cannot outlive that write.
        """
        with self._lock:
            entry = self._lookup_unlocked(key)
            if entry is not None:
                self._stats["hits"] += 1
                return entry
            self._stats["misses"] += 1
            epoch = self._epoch

        value = loader(key)
        if value is None:
            return None

        with self._lock:
            if self._epoch == epoch:
                self._store_unlocked(key, value)
            else:
                self._stats["discarded_loads"] += 1
        return value

    def put(self, key: K, value: V) -> None:
        """Store a value explicitly."""
        with self._lock:
            self._store_unlocked(key, value)

    def invalidate(self, key: K) -> bool:
        """Drop a key. Returns True if it was cached."""
        with self._lock:
            self._epoch += 1
            self._stats["invalidations"] += 1
            return self._data.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._epoch += 1
            self._data.clear()

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._stats["hits"] + self._stats["misses"]
            return {
                **self._stats,
                "size": len(self._data),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
                "hit_rate": self._stats["hits"] / lookups if lookups else 0.0,
            }

    def _lookup_unlocked(self, key: K) -> Optional[V]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._data[key]
            self._stats["expired"] += 1
            return None
        self._data.move_to_end(key)
        return value

    def _store_unlocked(self, key: K, value: V) -> None:
        self._data.pop(key, None)
        while len(self._data) >= self.max_entries:
            self._data.popitem(last=False)
            self._stats["evictions"] += 1
        self._data[key] = (value, self._clock() + self.ttl_seconds)
        self._stats["stores"] += 1


class NoteCache:
    """Content and preview caches in front of the working tree.

    Args:
        loader: Reads a note's content, returning None if it does not exist.
        preview_generator: Derives a preview from content.
        content_size: Capacity of the content cache.
        preview_size: Capacity of the preview cache.
        ttl_seconds: Lifetime of an entry in either cache.
    """

    def __init__(
        self,
        loader: Callable[[NoteKey], Optional[str]],
        preview_generator: Callable[[str], str] = truncate_preview,
        content_size: int = 512,
        preview_size: int = 2048,
        ttl_seconds: float = 1800,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._preview_generator = preview_generator
        self.content_cache: LruTtlCache[NoteKey, str] = LruTtlCache(
            content_size, ttl_seconds, clock=clock, name="content"
        )
        self.preview_cache: LruTtlCache[NoteKey, str] = LruTtlCache(
            preview_size, ttl_seconds, clock=clock, name="preview"
        )
        self._lock = threading.Lock()

    def get_content(self, key: NoteKey) -> Optional[str]:
        """Full content, or None if the note does not exist."""
        return self.content_cache.get_or_load(key, self._loader)

    def get_preview(self, key: NoteKey) -> Optional[str]:
        """Preview, or None if the note does not exist."""
        return self.preview_cache.get_or_load(key, self._load_preview)

    def put(self, key: NoteKey, content: str) -> None:
        """Prime the content cache with exact post-write content.

        The preview is left to be derived on its next read.
        """
        with self._lock:
            self.preview_cache.invalidate(key)
            self.content_cache.put(key, content)

    def invalidate(self, key: NoteKey) -> None:
        """Drop both entries for a key."""
        with self._lock:
            self.content_cache.invalidate(key)
            self.preview_cache.invalidate(key)
        logger.debug(f"Invalidated cache for {key}")

    def clear(self) -> None:
        with self._lock:
            self.content_cache.clear()
            self.preview_cache.clear()

    def stats(self) -> Dict[str, Dict[str, Any]]:
        return {
            "content": self.content_cache.stats(),
            "preview": self.preview_cache.stats(),
        }

    def _load_preview(self, key: NoteKey) -> Optional[str]:
        content = self._loader(key)
        if content is None:
            return None
        return self._preview_generator(content)
