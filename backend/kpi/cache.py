"""Time-bounded in-memory cache and the caching repository decorator."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from kpi.entities import Board, BoardConfiguration, SearchResult, Sprint, TimeEntry, WorkItem

logger = logging.getLogger(__name__)

MISSING = object()

# TTL classes, in seconds
SHORT_TTL = 120   # open sprint views, change during the day
MEDIUM_TTL = 300  # date-ranged and free searches
LONG_TTL = 600    # per-issue worklogs, backlog, board metadata


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: Any
    expires_at: float


def _freeze(value):
    if isinstance(value, list):
        return tuple(value)
    return value


class TimedCache:
    """Thread-safe key/value store where every entry expires.

    Args:
        default_ttl: Seconds an entry lives when set() gets no ttl
        sweep_interval: Seconds between background sweeps of expired entries
        clock: Monotonic time source, replaceable in tests
    """

    def __init__(self, default_ttl: float = MEDIUM_TTL, sweep_interval: float = 60,
                 clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def get(self, key: str, default=None):
        """Cached payload, or `default` when absent or expired.

        An expired entry is removed on the way.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                return default
        logger.debug(f"Cache HIT: {key}")
        return entry.payload

    def set(self, key: str, value, ttl: Optional[float] = None):
        """Store a value. Lists are stored as tuples so callers cannot mutate them."""
        ttl = self.default_ttl if ttl is None else ttl
        entry = CacheEntry(key, _freeze(value), self._clock() + ttl)
        with self._lock:
            self._entries[key] = entry

    def get_or_load(self, key: str, ttl: float, loader: Callable[[], Any]):
        """Return the cached value, or call `loader` and cache what it returns.

        Concurrent misses on one key may both call the loader; the last
        write wins.
        """
        value = self.get(key, MISSING)
        if value is not MISSING:
            return value
        logger.debug(f"Cache MISS: {key}")
        value = _freeze(loader())
        self.set(key, value, ttl)
        return value

    def invalidate(self, prefix: str) -> int:
        """Drop every entry whose key starts with `prefix`.

        Returns:
            Number of entries removed
        """
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        logger.info(f"Cache invalidated {len(doomed)} entries with prefix {prefix!r}")
        return len(doomed)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Cache cleared ({count} entries)")
        return count

    def sweep(self) -> int:
        """Remove expired entries, returning how many were dropped."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Cache sweep removed {len(expired)} expired entries")
        return len(expired)

    def start_sweeper(self):
        """Sweep expired entries every `sweep_interval` seconds on a daemon thread."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="cache-sweeper", daemon=True)
        self._sweeper.start()

    def stop_sweeper(self):
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=self.sweep_interval)
            self._sweeper = None

    def _sweep_loop(self):
        while not self._stop.wait(self.sweep_interval):
            self.sweep()


def _key(*parts) -> str:
    return ":".join("" if p is None else str(p) for p in parts)


class CachedJiraRepository:
    """JiraRepository with every read going through a TimedCache.

    Keys are the operation prefix followed by the call arguments, so that
    invalidate("worklog:") drops all worklog reads and invalidate("sprint:")
    all sprint views.
    """

    def __init__(self, inner, cache: TimedCache):
        self.inner = inner
        self.cache = cache

    @property
    def settings(self):
        return self.inner.settings

    @property
    def mapper(self):
        return self.inner.mapper

    def search_items(self, query: str, fields: Optional[str] = None,
                     page_size: int = 100) -> SearchResult:
        return self.cache.get_or_load(
            _key("issues:search", fields, page_size, query), MEDIUM_TTL,
            lambda: self.inner.search_items(query, fields, page_size)
        )

    def search_items_limited(self, query: str, fields: Optional[str] = None,
                             max_results: int = 20) -> SearchResult:
        return self.cache.get_or_load(
            _key("issues:limited", fields, max_results, query), MEDIUM_TTL,
            lambda: self.inner.search_items_limited(query, fields, max_results)
        )

    def find_sprint_issues(self, sprint_id: int) -> Tuple[WorkItem, ...]:
        return self.cache.get_or_load(
            _key("sprint:issues", sprint_id), SHORT_TTL,
            lambda: self.inner.find_sprint_issues(sprint_id)
        )

    def find_board_sprint_issues(self, board_id: int, sprint_id: int) -> Tuple[WorkItem, ...]:
        return self.cache.get_or_load(
            _key("sprint:boardissues", board_id, sprint_id), SHORT_TTL,
            lambda: self.inner.find_board_sprint_issues(board_id, sprint_id)
        )

    def find_open_sprint_issues(self, project_key: str) -> Tuple[WorkItem, ...]:
        return self.cache.get_or_load(
            _key("sprint:openissues", project_key), SHORT_TTL,
            lambda: self.inner.find_open_sprint_issues(project_key)
        )

    def find_backlog_issues(self, project_key: str) -> Tuple[WorkItem, ...]:
        return self.cache.get_or_load(
            _key("sprint:backlog", project_key, "all"), LONG_TTL,
            lambda: self.inner.find_backlog_issues(project_key)
        )

    def fetch_worklogs(self, item_key: str) -> Tuple[TimeEntry, ...]:
        return self.cache.get_or_load(
            _key("worklog:issue", item_key), LONG_TTL,
            lambda: self.inner.fetch_worklogs(item_key)
        )

    def search_worklogs(self, query) -> Tuple[TimeEntry, ...]:
        return self.cache.get_or_load(
            _key("worklog:search", query.cache_key()), MEDIUM_TTL,
            lambda: self.inner.search_worklogs(query)
        )

    def get_board(self, board_id: int) -> Board:
        return self.cache.get_or_load(
            _key("board:id", board_id), LONG_TTL,
            lambda: self.inner.get_board(board_id)
        )

    def get_board_configuration(self, board_id: int) -> BoardConfiguration:
        return self.cache.get_or_load(
            _key("board:config", board_id), LONG_TTL,
            lambda: self.inner.get_board_configuration(board_id)
        )

    def get_saved_filter_query(self, filter_id) -> Optional[str]:
        return self.cache.get_or_load(
            _key("filter:id", filter_id), LONG_TTL,
            lambda: self.inner.get_saved_filter_query(filter_id)
        )

    def get_sprints_for_board(self, board_id: int, state: Optional[str] = None) -> Tuple[Sprint, ...]:
        ttl = SHORT_TTL if state == "active" else MEDIUM_TTL
        return self.cache.get_or_load(
            _key("sprint:board", board_id, state or "all"), ttl,
            lambda: self.inner.get_sprints_for_board(board_id, state)
        )

    def find_closed_sprints(self, board_id: int, limit: int = 10) -> Tuple[Sprint, ...]:
        return self.cache.get_or_load(
            _key("sprint:closed", board_id, limit), LONG_TTL,
            lambda: self.inner.find_closed_sprints(board_id, limit)
        )
