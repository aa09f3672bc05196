import unittest
import tempfile
import os
import sqlite3

from storage.cache import BoundedCache, CacheKey, normalize_selector


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestCacheKey(unittest.TestCase):
    def test_selector_order_and_duplicates_do_not_matter(self):
        a = CacheKey(['b/two', 'a/one', 'a/one'], '2024-01-01', '2024-01-31')
        b = CacheKey(('a/one', 'b/two'), '2024-01-01', '2024-01-31')
        self.assertEqual(a, b)
        self.assertEqual(str(a), str(b))

    def test_page_and_per_page_are_part_of_the_key(self):
        base = CacheKey('a/one', '2024-01-01', '2024-01-31', 1, 50)
        self.assertNotEqual(base, CacheKey('a/one', '2024-01-01', '2024-01-31', 2, 50))
        self.assertNotEqual(base, CacheKey('a/one', '2024-01-01', '2024-01-31', 1, 25))
        self.assertNotEqual(base, CacheKey('a/one', '2024-01-01', '2024-02-01', 1, 50))

    def test_normalize_selector_drops_blanks(self):
        self.assertEqual(normalize_selector([' a/one ', '', None, 'a/one']), ('a/one',))
        self.assertEqual(normalize_selector('a/one'), ('a/one',))
        self.assertEqual(normalize_selector(None), ())


class TestCacheBehavior(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.cache = BoundedCache(ttl_seconds=60, max_entries=3, clock=self.clock)

    def tearDown(self):
        self.cache.close()

    def test_cache_put_get(self):
        key = CacheKey(['a/one'], '2024-01-01', '2024-01-31', 1, 50)
        self.cache.put(key, {'rows': [1, 2]})
        self.assertEqual(self.cache.get(key), {'rows': [1, 2]})
        self.assertIn(key, self.cache)
        self.assertEqual(self.cache.stats()['hits'], 1)

    def test_missing_key_is_a_miss(self):
        self.assertIsNone(self.cache.get('nope'))
        self.assertEqual(self.cache.stats()['misses'], 1)

    def test_entry_expires_at_ttl(self):
        self.cache.put('k', [1])
        self.clock.advance(59)
        self.assertEqual(self.cache.get('k'), [1])
        self.clock.advance(1)
        # age == ttl is already expired
        self.assertIsNone(self.cache.get('k'))
        self.assertNotIn('k', self.cache)
        self.assertEqual(len(self.cache), 0)

    def test_put_refreshes_an_expired_entry(self):
        self.cache.put('k', [1])
        self.clock.advance(120)
        self.cache.put('k', [2])
        self.assertEqual(self.cache.get('k'), [2])

    def test_lru_eviction_keeps_recently_read_entries(self):
        for k in ('a', 'b', 'c'):
            self.cache.put(k, k)
            self.clock.advance(1)
        # reading 'a' makes 'b' the least recently used
        self.assertEqual(self.cache.get('a'), 'a')
        self.clock.advance(1)
        self.cache.put('d', 'd')
        self.assertEqual(len(self.cache), 3)
        self.assertIsNone(self.cache.get('b'))
        for k in ('a', 'c', 'd'):
            self.assertEqual(self.cache.get(k), k)

    def test_put_prunes_expired_entries(self):
        self.cache.put('old', 1)
        self.clock.advance(61)
        self.cache.put('new', 2)
        self.assertEqual(self.cache.keys(), ['new'])

    def test_delete_and_clear(self):
        self.cache.put('a', 1)
        self.clock.advance(1)
        self.cache.put('b', 2)
        self.assertEqual(self.cache.delete('a'), 1)
        self.assertEqual(self.cache.delete('a'), 0)
        self.cache.clear()
        self.assertEqual(self.cache.stats()['count'], 0)

    def test_invalid_bounds_rejected(self):
        with self.assertRaises(ValueError):
            BoundedCache(ttl_seconds=0)
        with self.assertRaises(ValueError):
            BoundedCache(max_entries=0)


class TestCacheFile(unittest.TestCase):
    def test_file_backed_cache_persists_rows(self):
        tmp = tempfile.NamedTemporaryFile(delete=False)
        path = tmp.name
        tmp.close()
        try:
            with BoundedCache(path=path) as cache:
                cache.put('k1', {'a': 1})
            conn = sqlite3.connect(path)
            cur = conn.cursor()
            cur.execute('SELECT rows FROM query_cache WHERE key = ?', ('k1',))
            self.assertEqual(cur.fetchone()[0], '{"a": 1}')
            conn.close()
        finally:
            try:
                os.remove(path)
            except OSError:
                pass


if __name__ == '__main__':
    unittest.main()
