"""
Report builder: the control and read surface over one report session.

A build walks every page of the contribution source, folds the rows into an
AggregationEngine, optionally enriches each (repository, identity, date) unit with
task and file counts, and publishes snapshots as it goes. Starting a new build or
calling cancel() supersedes the running one; a superseded build stops before its next
step and never publishes into the newer session.
"""
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from errors import BuildCancelled, Misconfiguration
from ingest.collector import PaginatedCollector, page_count, DEFAULT_PER_PAGE
from normalize.models import DateRange, Metric, ReportPage
from pipeline.engine import AggregateSnapshot, AggregationEngine
from pipeline.progress import BuildState, ProgressReporter, LABEL_COLLECTING, LABEL_ENRICHING
from pipeline.session import ReportSession
from scoring import ranking
from storage.cache import BoundedCache, normalize_selector

logger = logging.getLogger(__name__)


def _empty_snapshot() -> AggregateSnapshot:
    return AggregateSnapshot({}, {}, {})


class ReportBuilder:
    """
    source: fetch_report_page(selector, date_range, page, per_page) -> ReportPage
    detail_source: fetch_unit_details(repository, identity, date); defaults to source
    """

    def __init__(self, source, detail_source=None, cache: Optional[BoundedCache] = None,
                 per_page: int = DEFAULT_PER_PAGE, request_delay: Optional[float] = None,
                 top_n: int = ranking.DEFAULT_TOP_N, sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic, session: Optional[ReportSession] = None):
        self.source = source
        self.detail_source = detail_source if detail_source is not None else source
        self.session = session or ReportSession(cache)
        self.collector = PaginatedCollector(source, cache=self.session.cache, per_page=per_page,
                                            request_delay=request_delay, sleep=sleep, clock=clock)
        self.progress = ProgressReporter()
        self.default_top_n = top_n
        self.engine = AggregationEngine(self.detail_source, throttle=self.collector.throttle)
        self.report: Optional[ReportPage] = None
        self.last_error: Optional[Exception] = None
        self.enrichment_failures: List[Any] = []
        self._report_request = None
        self._last_request: Optional[Dict[str, Any]] = None
        self._snapshot = _empty_snapshot()
        self._visible: List[str] = []

    # -- control --------------------------------------------------------------

    @property
    def state(self) -> BuildState:
        return self.progress.state

    def on_progress(self, callback):
        self.progress.on_progress(callback)

    def _validate(self, selector, date_range) -> tuple:
        keys = normalize_selector(selector)
        if not keys:
            raise Misconfiguration("Select at least one repository before building the graph.")
        if not isinstance(date_range, DateRange) or not date_range.is_valid():
            raise Misconfiguration(f"Invalid date range: {date_range!r}")
        return keys

    def fetch_report(self, selector: Iterable[str], date_range: DateRange, page: int = 1) -> ReportPage:
        """Fetch one page for display and remember it as the prior report for build_from_report()."""
        keys = self._validate(selector, date_range)
        self.session.begin()
        result = self.collector.fetch_page(keys, date_range, page)
        self.report = result
        self._report_request = (keys, date_range)
        return result

    def _guard(self, generation: int) -> Callable[[], None]:
        def check():
            if not self.session.is_current(generation):
                raise BuildCancelled(f"build {generation} was superseded")
        return check

    def _accept(self, generation: int, snapshot: AggregateSnapshot):
        if self.session.is_current(generation):
            self._snapshot = snapshot

    def _leave_running_state(self):
        if self.progress.state in (BuildState.COLLECTING, BuildState.ENRICHING, BuildState.FAILED):
            self.progress.transition(BuildState.IDLE)

    def start_build(self, selector: Iterable[str], date_range: DateRange, include_enrichment: bool = True,
                    first_page: Optional[ReportPage] = None, member_filter: Optional[str] = None) -> Optional[AggregateSnapshot]:
        """
        Run one complete build. Returns the final snapshot, or None when the build was
        superseded before it finished. Collection errors are re-raised after the builder
        has gone through FAILED back to IDLE; the partial aggregates stay readable.
        """
        keys = self._validate(selector, date_range)
        self._last_request = dict(selector=keys, date_range=date_range, include_enrichment=include_enrichment,
                                  first_page=first_page, member_filter=member_filter)
        generation = self.session.begin()
        self.last_error = None
        self.enrichment_failures = []
        self._leave_running_state()
        self.progress.transition(BuildState.COLLECTING)

        # detail calls are spaced by the same throttle as page fetches
        engine = AggregationEngine(self.detail_source, throttle=self.collector.throttle)
        engine.subscribe(lambda snap: self._accept(generation, snap))
        self.engine = engine
        self._snapshot = _empty_snapshot()
        guard = self._guard(generation)
        try:
            self._collect(engine, keys, date_range, first_page, member_filter, guard)
            if include_enrichment:
                guard()
                self.progress.transition(BuildState.ENRICHING)
                self._enrich(engine, guard)
            guard()
        except BuildCancelled:
            logger.info("build %d stopped: superseded", generation)
            return None
        except Exception as exc:
            if not self.session.is_current(generation):
                logger.info("build %d failed after being superseded: %s", generation, exc)
                return None
            self._fail(exc)
            raise

        self.progress.transition(BuildState.DONE)
        self.progress.clear()
        self.select_all()
        return self._snapshot

    def build_from_report(self, include_enrichment: bool = True, member_filter: Optional[str] = None):
        """Build over the selection of the last fetch_report(), reusing its page."""
        if self.report is None or self._report_request is None:
            raise Misconfiguration("Generate a report before building the graph.")
        keys, date_range = self._report_request
        return self.start_build(keys, date_range, include_enrichment=include_enrichment,
                                first_page=self.report, member_filter=member_filter)

    def _collect(self, engine: AggregationEngine, keys, date_range: DateRange, first_page: Optional[ReportPage],
                 member_filter: Optional[str], guard):
        resolver = self.session.resolver
        if first_page is None:
            guard()
            first_page = self.collector.fetch_page(keys, date_range, 1)
            guard()
            processed = 1
        else:
            processed = 1 if first_page.rows else 0
        total = page_count(first_page.total_rows, first_page.per_page)
        engine.ingest_records(first_page.rows, resolver, member_filter)
        self.progress.emit(LABEL_COLLECTING, processed, total)

        steps = self.collector.iter_steps(keys, date_range, first_page)
        for _step, page in self.progress.drive(steps, LABEL_COLLECTING, total, processed, guard):
            engine.ingest_records(page.rows, resolver, member_filter)

    def _enrich(self, engine: AggregationEngine, guard):
        total = len(engine.units())
        self.progress.emit(LABEL_ENRICHING, 0, total)
        for step, _ in self.progress.drive(engine.iter_enrich_steps(), LABEL_ENRICHING, total, 0, guard):
            if step.error is not None:
                self.enrichment_failures.append(step)

    def _fail(self, exc: Exception):
        logger.error("build failed: %s", exc)
        self.last_error = exc
        self.progress.transition(BuildState.FAILED)
        self.progress.clear()
        self.progress.transition(BuildState.IDLE)

    def cancel(self):
        """Invalidate the running build, if any."""
        self.session.invalidate()
        self._leave_running_state()
        self.progress.clear()

    def dismiss_error(self):
        self.last_error = None

    def retry(self):
        if self._last_request is None:
            raise Misconfiguration("There is no build to retry.")
        return self.start_build(**self._last_request)

    # -- read API -------------------------------------------------------------

    def snapshot(self) -> AggregateSnapshot:
        return self._snapshot

    def top_n(self, metric: Any = Metric.CONTRIBUTIONS, n: Optional[int] = None) -> List[Dict[str, Any]]:
        return ranking.top_n(self._snapshot, metric, self.default_top_n if n is None else n)

    def time_series(self, key: str) -> List[Dict[str, Any]]:
        return ranking.series_points(self._snapshot, key)

    def all_identities(self) -> List[str]:
        """Every identity key, ranked by contributions."""
        return [r['key'] for r in ranking.top_n(self._snapshot, Metric.CONTRIBUTIONS, None)]

    def display_label(self, key: str) -> str:
        return self._snapshot.labels.get(key, key)

    def visible_top_n(self, metric: Any = Metric.CONTRIBUTIONS, n: Optional[int] = None) -> List[Dict[str, Any]]:
        n = self.default_top_n if n is None else n
        rows = ranking.filter_visible(ranking.top_n(self._snapshot, metric, None), self._visible)
        return rows[:max(0, int(n))]

    def visible_time_series(self) -> Dict[str, List[Dict[str, Any]]]:
        keys = [r['key'] for r in ranking.filter_visible(ranking.identity_rows(self._snapshot), self._visible)]
        return {k: ranking.series_points(self._snapshot, k) for k in keys}

    def detail_records(self) -> List[Dict[str, Any]]:
        return self.engine.detail_records()

    def rows(self):
        return self.engine.rows()

    # -- visibility -----------------------------------------------------------

    @property
    def visible_identities(self) -> List[str]:
        return list(self._visible)

    def set_visible_identities(self, keys: Iterable[str]):
        wanted = set(keys or ())
        self._visible = [k for k in self.all_identities() if k in wanted]

    def select_all(self):
        self._visible = self.all_identities()

    def clear_all(self):
        """Hide everything but the first identity; at least one stays visible."""
        self._visible = self.all_identities()[:1]

    def toggle_identity(self, key: str):
        if key not in self._snapshot.totals:
            raise KeyError(key)
        if key in self._visible:
            if len(self._visible) > 1:
                self._visible.remove(key)
        else:
            self.set_visible_identities(self._visible + [key])


__all__ = ["ReportBuilder"]
