"""
Derived metrics for enrichment units.
Turns the detail records fetched for one (repository, identity, date) unit into metric
increments. Adding a detail-level metric means adding it to normalize.models.Metric and
deriving it here.
"""
from typing import Dict, Iterable, List
from normalize.models import DetailRecord, Metric, DETAIL_METRICS


def unique_details(details: Iterable[DetailRecord]) -> List[DetailRecord]:
    """Drop repeated detail ids, keeping the first occurrence."""
    seen = {}
    for d in details or []:
        key = d.id or d.task_ref
        if key not in seen:
            seen[key] = d
    return list(seen.values())


def derive_detail_metrics(details: Iterable[DetailRecord]) -> Dict[Metric, int]:
    """
    Task count is the number of distinct detail records; file counts are summed over them.
    Returns a mapping over DETAIL_METRICS only.
    """
    uniq = unique_details(details)
    return {
        Metric.TASKS: len(uniq),
        Metric.FILES_ADDED: sum(d.files_added for d in uniq),
        Metric.FILES_DELETED: sum(d.files_deleted for d in uniq),
        Metric.FILES_MODIFIED: sum(d.files_modified for d in uniq),
    }


def zero_detail_metrics() -> Dict[Metric, int]:
    return {m: 0 for m in DETAIL_METRICS}
