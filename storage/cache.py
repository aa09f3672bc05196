"""
Bounded SQLite cache for upstream query results.
Entries expire after a fixed TTL and the least-recently-used entries are evicted
once the entry count exceeds max_entries. Defaults to an in-memory database, so
nothing outlives the process.
"""

import sqlite3
import json
import time
import threading
import logging
from typing import Optional, Any, Dict, Callable, List, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60
DEFAULT_MAX_ENTRIES = 500

# noinspection SqlResolve
SQL_CREATE = """
CREATE TABLE IF NOT EXISTS query_cache (
    key TEXT PRIMARY KEY,
    rows TEXT,
    inserted_at REAL,
    accessed_at REAL
);
"""


def normalize_selector(selector: Any) -> Tuple[str, ...]:
    """Sorted, de-duplicated tuple of repository names (a single string is one repository)."""
    if selector is None:
        return ()
    if isinstance(selector, str):
        selector = [selector]
    return tuple(sorted({str(s).strip() for s in selector if s and str(s).strip()}))


class CacheKey:
    """
    (selector set, start date, end date) plus optional page coordinates.
    The selector is order-insensitive: ['b/c', 'a/b'] and ['a/b', 'b/c'] share entries.
    """

    def __init__(self, selector: Any, start: str, end: str, page: Optional[int] = None, per_page: Optional[int] = None):
        self.selector = normalize_selector(selector)
        self.start = start
        self.end = end
        self.page = page
        self.per_page = per_page

    def __str__(self):
        key = f"{','.join(self.selector)}:{self.start}:{self.end}"
        if self.page is not None:
            key += f":page:{self.page}:per:{self.per_page}"
        return key

    def __eq__(self, other):
        return isinstance(other, CacheKey) and str(self) == str(other)

    def __hash__(self):
        return hash(str(self))

    def __repr__(self):
        return f"CacheKey({str(self)!r})"


class BoundedCache:
    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, max_entries: int = DEFAULT_MAX_ENTRIES,
                 path: Optional[str] = None, clock: Optional[Callable[[], float]] = None):
        """Create a cache instance.

        :param ttl_seconds: entries older than this are never returned.
        :param max_entries: LRU eviction kicks in when the count exceeds this.
        :param path: SQLite file path or None for in-memory.
        :param clock: time source (seconds); defaults to time.time.
        """
        if ttl_seconds is None or float(ttl_seconds) <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries is None or int(max_entries) < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = int(max_entries)
        self.path = path or ':memory:'
        self.clock = clock or time.time
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0
        self._init_db()

    def _init_db(self):
        with self._lock:
            cur = self.conn.cursor()
            cur.executescript(SQL_CREATE)
            self.conn.commit()

    def close(self):
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _expired(self, inserted_at: float, now: float) -> bool:
        return now - float(inserted_at) >= self.ttl_seconds

    # noinspection SqlResolve
    def get(self, key: Any) -> Optional[Any]:
        """Return the cached value, or None on a miss or when the entry has outlived its TTL."""
        skey = str(key)
        with self._lock:
            now = self.clock()
            cur = self.conn.cursor()
            cur.execute('SELECT rows, inserted_at FROM query_cache WHERE key = ?', (skey,))
            row = cur.fetchone()
            if not row:
                self.misses += 1
                return None
            payload, inserted_at = row
            if self._expired(inserted_at, now):
                cur.execute('DELETE FROM query_cache WHERE key = ?', (skey,))
                self.conn.commit()
                self.misses += 1
                logger.debug("cache entry expired: %s", skey)
                return None
            cur.execute('UPDATE query_cache SET accessed_at = ? WHERE key = ?', (now, skey))
            self.conn.commit()
            self.hits += 1
        return json.loads(payload)

    # noinspection SqlResolve
    def put(self, key: Any, rows: Any):
        """Store a JSON-serializable value, then prune expired and least-recently-used entries."""
        payload = json.dumps(rows)
        with self._lock:
            now = self.clock()
            cur = self.conn.cursor()
            cur.execute('REPLACE INTO query_cache(key, rows, inserted_at, accessed_at) VALUES (?, ?, ?, ?)', (str(key), payload, now, now))
            self.conn.commit()
            self._prune(now)

    # noinspection SqlResolve
    def _prune(self, now: float):
        with self._lock:
            cur = self.conn.cursor()
            cur.execute('DELETE FROM query_cache WHERE inserted_at <= ?', (now - self.ttl_seconds,))
            cur.execute('SELECT COUNT(1) FROM query_cache')
            count = cur.fetchone()[0] or 0
            if count > self.max_entries:
                to_remove = int(count - self.max_entries)
                cur.execute('SELECT key FROM query_cache ORDER BY accessed_at ASC, inserted_at ASC LIMIT ?', (to_remove,))
                keys = [r[0] for r in cur.fetchall()]
                cur.executemany('DELETE FROM query_cache WHERE key = ?', [(k,) for k in keys])
                logger.debug("evicted %d least-recently-used cache entries", len(keys))
            self.conn.commit()

    # noinspection SqlResolve
    def delete(self, key: Any) -> int:
        """Delete a specific key. Returns number of rows deleted."""
        with self._lock:
            cur = self.conn.cursor()
            cur.execute('DELETE FROM query_cache WHERE key = ?', (str(key),))
            self.conn.commit()
            return cur.rowcount

    # noinspection SqlWithoutWhere
    def clear(self):
        with self._lock:
            cur = self.conn.cursor()
            cur.execute('DELETE FROM query_cache')
            self.conn.commit()

    # noinspection SqlResolve
    def keys(self) -> List[str]:
        """Stored keys, most recently used first (expired entries included until pruned)."""
        with self._lock:
            cur = self.conn.cursor()
            cur.execute('SELECT key FROM query_cache ORDER BY accessed_at DESC')
            return [r[0] for r in cur.fetchall()]

    # noinspection SqlResolve
    def stats(self) -> Dict[str, Any]:
        """Entry count, oldest/newest insertion time and hit/miss counters."""
        with self._lock:
            cur = self.conn.cursor()
            cur.execute('SELECT COUNT(1), MIN(inserted_at), MAX(inserted_at) FROM query_cache')
            count, oldest, newest = cur.fetchone()
        return {
            'count': int(count or 0),
            'oldest': float(oldest) if oldest is not None else None,
            'newest': float(newest) if newest is not None else None,
            'hits': self.hits,
            'misses': self.misses,
        }

    def __contains__(self, key: Any) -> bool:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute('SELECT inserted_at FROM query_cache WHERE key = ?', (str(key),))
            row = cur.fetchone()
        return bool(row) and not self._expired(row[0], self.clock())

    def __len__(self):
        return self.stats()['count']


__all__ = ["BoundedCache", "CacheKey", "normalize_selector"]
