"""
Exhaustive walk of the paged contribution source.

The walk is expressed as an iterator of PageStep objects so one driver loop can run
them, publish progress between them and stop early when a build is superseded.
Pages are fetched one at a time with a fixed delay between upstream calls; any page
failure aborts the walk and no partial result is returned.
"""
import math
import time
import logging
from typing import Callable, Iterator, List, Optional, Iterable

from errors import ContribReportError, UpstreamRequestFailed
from normalize.models import DateRange, RawContributionRecord, ReportPage
from storage.cache import BoundedCache, CacheKey, normalize_selector

logger = logging.getLogger(__name__)

DEFAULT_PER_PAGE = 50
DEFAULT_REQUEST_DELAY = 0.5
MIN_REQUEST_DELAY = 0.05
MAX_REQUEST_DELAY = 5.0


def page_count(total_rows: int, per_page: int) -> int:
    if per_page <= 0:
        raise ValueError("per_page must be positive")
    return max(1, math.ceil(max(0, int(total_rows)) / per_page))


def clamp_delay(delay: Optional[float]) -> float:
    value = DEFAULT_REQUEST_DELAY if delay is None else float(delay)
    return min(MAX_REQUEST_DELAY, max(MIN_REQUEST_DELAY, value))


class Throttle:
    """
    Spaces sequential upstream calls at least `delay` seconds apart.
    Call wait() before a call and mark() once it returns, whether or not it failed.
    """

    def __init__(self, delay: Optional[float] = None, sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.delay = clamp_delay(delay)
        self._sleep = sleep
        self._clock = clock
        self._last_call: Optional[float] = None

    def wait(self):
        if self._last_call is not None:
            remaining = self.delay - (self._clock() - self._last_call)
            if remaining > 0:
                self._sleep(remaining)

    def mark(self):
        self._last_call = self._clock()


class PageStep:
    """Fetch of one page index. `page` holds the result once run() succeeds."""

    kind = 'page'

    def __init__(self, collector: 'PaginatedCollector', selector, date_range: DateRange, index: int, per_page: int):
        self.collector = collector
        self.selector = selector
        self.date_range = date_range
        self.index = index
        self.per_page = per_page
        self.page: Optional[ReportPage] = None

    @property
    def cache_key(self) -> CacheKey:
        return CacheKey(self.selector, self.date_range.start, self.date_range.end, self.index, self.per_page)

    def run(self) -> ReportPage:
        self.page = self.collector.fetch_page(self.selector, self.date_range, self.index, self.per_page)
        return self.page

    def __repr__(self):
        return f"PageStep({self.index})"


class PaginatedCollector:
    """
    Walks every page of the contribution source for one (selector, date range).

    source: object with fetch_report_page(selector, date_range, page, per_page) -> ReportPage.
    cache: shared BoundedCache consulted before every upstream call.
    """

    def __init__(self, source, cache: Optional[BoundedCache] = None, per_page: int = DEFAULT_PER_PAGE,
                 request_delay: Optional[float] = None, sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic, throttle: Optional[Throttle] = None):
        self.source = source
        self.cache = cache
        self.per_page = int(per_page)
        self.throttle = throttle or Throttle(request_delay, sleep=sleep, clock=clock)
        self.fetched_pages: List[int] = []

    @property
    def request_delay(self) -> float:
        return self.throttle.delay

    def fetch_page(self, selector, date_range: DateRange, index: int, per_page: Optional[int] = None) -> ReportPage:
        """Cache-checked fetch of a single page; raises UpstreamRequestFailed with the page index."""
        per_page = int(per_page or self.per_page)
        key = CacheKey(selector, date_range.start, date_range.end, index, per_page)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("page %d served from cache", index)
                return ReportPage.from_dict(cached)

        self.throttle.wait()
        self.fetched_pages.append(index)
        try:
            page = self.source.fetch_report_page(selector, date_range, index, per_page)
        except UpstreamRequestFailed as exc:
            if exc.page is None:
                exc.page = index
            raise
        except ContribReportError:
            raise
        except Exception as exc:
            raise UpstreamRequestFailed(f"Failed to fetch page {index}: {exc}", page=index) from exc
        finally:
            self.throttle.mark()

        if self.cache is not None:
            self.cache.put(key, page.to_dict())
        return page

    def iter_steps(self, selector, date_range: DateRange, first_page: Optional[ReportPage] = None,
                   per_page: Optional[int] = None) -> Iterator[PageStep]:
        """
        Yield one PageStep per page index still to fetch, ascending, skipping the known page.
        Without a known page, page 1 is yielded first and the page count is read from its result,
        so the consumer must run each step before advancing.
        """
        per_page = int(first_page.per_page if first_page is not None else (per_page or self.per_page))
        if first_page is None:
            step = PageStep(self, selector, date_range, 1, per_page)
            yield step
            if step.page is None:
                raise UpstreamRequestFailed("first page was not fetched before advancing", page=1)
            first_page = step.page
        for index in range(1, page_count(first_page.total_rows, first_page.per_page) + 1):
            if index == first_page.page:
                continue
            yield PageStep(self, selector, date_range, index, per_page)

    def collect_all(self, selector: Iterable[str], date_range: DateRange, first_page: Optional[ReportPage] = None) -> List[RawContributionRecord]:
        """Every row of every page, the known page's rows first."""
        selector = normalize_selector(selector)
        rows: List[RawContributionRecord] = list(first_page.rows) if first_page is not None else []
        for step in self.iter_steps(selector, date_range, first_page):
            rows.extend(step.run().rows)
        return rows


__all__ = ["PaginatedCollector", "PageStep", "Throttle", "page_count", "clamp_delay"]
