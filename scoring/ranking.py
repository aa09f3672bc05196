"""
Read-side helpers over a finished aggregate snapshot.
None of these mutate the snapshot they are given.
"""
from typing import Any, Dict, Iterable, List, Optional, Set

from normalize.models import Metric

DEFAULT_TOP_N = 25


def identity_rows(snapshot) -> List[Dict[str, Any]]:
    """One dict per identity: key, label and every metric total."""
    rows = []
    for key, totals in snapshot.totals.items():
        row = {'key': key, 'label': snapshot.labels.get(key, key)}
        row.update({m.value: int(totals.get(m, 0)) for m in Metric})
        rows.append(row)
    return rows


def top_n(snapshot, metric: Any, n: Optional[int] = DEFAULT_TOP_N) -> List[Dict[str, Any]]:
    """Identities ranked by `metric` descending (ties by label), truncated to n."""
    m = Metric.parse(metric)
    rows = sorted(identity_rows(snapshot), key=lambda r: (-r[m.value], r['label'].lower(), r['key']))
    return rows if n is None else rows[:max(0, int(n))]


def filter_visible(rows: List[Dict[str, Any]], visible: Optional[Iterable[str]]) -> List[Dict[str, Any]]:
    """Keep rows whose key is visible; an empty selection or an empty result shows everything."""
    keys: Set[str] = set(visible or ())
    if not keys:
        return list(rows)
    filtered = [r for r in rows if r['key'] in keys]
    return filtered or list(rows)


def series_points(snapshot, key: str) -> List[Dict[str, Any]]:
    """Time series for one identity, sorted by date ascending."""
    points = []
    for day in sorted(snapshot.series.get(key, {})):
        values = snapshot.series[key][day]
        point = {'date': day}
        point.update({m.value: int(values.get(m, 0)) for m in Metric})
        points.append(point)
    return points


def total_from_series(snapshot, key: str, metric: Any) -> int:
    m = Metric.parse(metric)
    return sum(int(v.get(m, 0)) for v in snapshot.series.get(key, {}).values())
