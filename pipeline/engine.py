"""
Streaming aggregation of contribution rows into per-identity totals and per-date series.

Rows are folded in additively as pages arrive; a snapshot is published to subscribers
after every batch. A second pass enriches each unique (repository, identity, date) unit
with task and file metrics derived from detail records, adding them to the same structures.
"""
import copy
import logging
from collections import OrderedDict
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Any

from errors import UpstreamRequestFailed
from normalize.identity import IdentityResolver, looks_like_username
from normalize.models import (
    ContributionRow, DetailRecord, EnrichmentUnit, Metric, RawContributionRecord, ROW_METRICS, empty_metrics,
)
from normalize.util import normalize_detail, resolve_member_identifier, to_contribution_row
from scoring.metrics import derive_detail_metrics, zero_detail_metrics

logger = logging.getLogger(__name__)


class AggregateSnapshot:
    """Detached copy of the aggregates at one point in time."""

    def __init__(self, totals: Dict[str, Dict[Metric, int]], series: Dict[str, Dict[str, Dict[Metric, int]]], labels: Dict[str, str]):
        self.totals = totals
        self.series = series
        self.labels = labels

    def identities(self) -> List[str]:
        return list(self.totals.keys())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totals': {k: {m.value: v for m, v in t.items()} for k, t in self.totals.items()},
            'series': {k: {d: {m.value: v for m, v in p.items()} for d, p in s.items()} for k, s in self.series.items()},
            'labels': dict(self.labels),
        }


class EnrichStep:
    """Enrichment of one unit. Failures are isolated: they are logged and count as zero."""

    kind = 'enrich'

    def __init__(self, engine: 'AggregationEngine', unit: EnrichmentUnit):
        self.engine = engine
        self.unit = unit
        self.error: Optional[Exception] = None

    def run(self) -> Dict[Metric, int]:
        try:
            return self.engine.enrich_unit(self.unit)
        except Exception as exc:
            self.error = exc
            logger.warning("enrichment failed for %s: %s", self.unit.key, exc)
            return zero_detail_metrics()

    def __repr__(self):
        return f"EnrichStep({self.unit.key!r})"


class AggregationEngine:
    """
    detail_source: object with fetch_unit_details(repository, identity, date) -> list of DetailRecord
    (or dicts). Only needed for enrichment.
    throttle: optional ingest.collector.Throttle spacing the detail calls.
    """

    def __init__(self, detail_source=None, throttle=None):
        self.detail_source = detail_source
        self.throttle = throttle
        self._totals: Dict[str, Dict[Metric, int]] = OrderedDict()
        self._series: Dict[str, Dict[str, Dict[Metric, int]]] = OrderedDict()
        self._labels: Dict[str, str] = {}
        self._units: "OrderedDict[str, EnrichmentUnit]" = OrderedDict()
        self._details: List[Dict[str, Any]] = []
        self._rows: List[ContributionRow] = []
        self._subscribers: List[Callable[[AggregateSnapshot], None]] = []
        self.rows_ingested = 0

    def subscribe(self, callback: Callable[[AggregateSnapshot], None]):
        self._subscribers.append(callback)

    def _publish(self) -> AggregateSnapshot:
        snap = self.snapshot()
        for cb in list(self._subscribers):
            cb(snap)
        return snap

    def _add(self, key: str, day: str, increments: Dict[Metric, int]):
        # totals and series move together, so a total always equals the sum of its series
        totals = self._totals.setdefault(key, empty_metrics())
        point = self._series.setdefault(key, {}).setdefault(day, empty_metrics())
        for metric, value in increments.items():
            totals[metric] += int(value or 0)
            point[metric] += int(value or 0)

    def ingest(self, rows: Iterable[ContributionRow]) -> AggregateSnapshot:
        """Fold a batch of normalized rows into the aggregates, then publish a snapshot."""
        for row in rows:
            if not self._labels.get(row.canonical_key) and row.display_label:
                self._labels[row.canonical_key] = row.display_label
            self._labels.setdefault(row.canonical_key, row.canonical_key)
            self._add(row.canonical_key, row.date, {m: row.metrics()[m] for m in ROW_METRICS})
            if row.row_id not in self._units:
                self._units[row.row_id] = EnrichmentUnit(row.repository, row.canonical_key, resolve_member_identifier(row), row.date)
            self._rows.append(row)
            self.rows_ingested += 1
        return self._publish()

    def ingest_records(self, records: Iterable[RawContributionRecord], resolver: IdentityResolver,
                       member_filter: Optional[str] = None) -> AggregateSnapshot:
        """Resolve raw records to rows and ingest them. member_filter keeps one contributor only."""
        rows = [to_contribution_row(r, resolver) for r in records]
        if member_filter:
            wanted = resolver.lookup(member_filter)
            rows = [r for r in rows if r.canonical_key == wanted]
        return self.ingest(rows)

    def units(self) -> List[EnrichmentUnit]:
        return list(self._units.values())

    def enrich_unit(self, unit: EnrichmentUnit) -> Dict[Metric, int]:
        """
        Fetch details for one unit, derive task/file metrics and add them. Raises on fetch failure.
        Units without a username-like handle cannot be searched upstream and count as zero.
        """
        if self.detail_source is None:
            raise UpstreamRequestFailed("no detail source configured", unit=unit.key)
        if not looks_like_username(unit.identity):
            logger.debug("no login for %s, skipping detail lookup", unit.key)
            return zero_detail_metrics()
        if self.throttle is not None:
            self.throttle.wait()
        try:
            raw = self.detail_source.fetch_unit_details(unit.repository, unit.identity, unit.date)
        except UpstreamRequestFailed as exc:
            if not exc.unit:
                exc.unit = unit.key
            raise
        finally:
            if self.throttle is not None:
                self.throttle.mark()
        details: List[DetailRecord] = [normalize_detail(d) for d in (raw or [])]
        derived = derive_detail_metrics(details)
        self._add(unit.canonical_key, unit.date, derived)
        for d in details:
            self._details.append({'unit': unit, 'detail': d})
        self._publish()
        return derived

    def iter_enrich_steps(self) -> Iterator[EnrichStep]:
        for unit in self.units():
            yield EnrichStep(self, unit)

    def enrich_all(self) -> List[EnrichStep]:
        """Enrich every unit sequentially; returns the steps so callers can inspect failures."""
        steps = list(self.iter_enrich_steps())
        for step in steps:
            step.run()
        return steps

    def rows(self) -> List[ContributionRow]:
        """Every ingested row in arrival order (row export)."""
        return list(self._rows)

    def detail_records(self) -> List[Dict[str, Any]]:
        """Every detail fetched so far, joined with the unit it belongs to."""
        return list(self._details)

    def display_label(self, key: str) -> str:
        return self._labels.get(key, key)

    def snapshot(self) -> AggregateSnapshot:
        return AggregateSnapshot(copy.deepcopy(dict(self._totals)), copy.deepcopy(dict(self._series)), dict(self._labels))


__all__ = ["AggregationEngine", "AggregateSnapshot", "EnrichStep"]
