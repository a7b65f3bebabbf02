"""Time-boxed memo of the full issue list."""

import threading
import time
from typing import Callable, Optional

DEFAULT_TTL_SECONDS = 5 * 60


class ItemListCache:
    """Caches the result of ``fetch`` for ``ttl_seconds``.

    The lock is held while fetching, so callers arriving during a refresh
    wait for it and get the same list instead of fetching again.
    """

    def __init__(self, fetch: Callable[[], list], ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self._fetch = fetch
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._items: Optional[list] = None
        self._fetched_at: Optional[float] = None

    def get(self) -> list:
        with self._lock:
            if self._items is not None and self._clock() - self._fetched_at < self.ttl_seconds:
                return self._items
            items = self._fetch()
            self._items = items
            self._fetched_at = self._clock()
            return items

    def invalidate(self) -> None:
        with self._lock:
            self._items = None
            self._fetched_at = None
