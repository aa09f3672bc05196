"""
Unified data models for contribution records, identities and aggregates.
"""

from datetime import date as date_cls
from enum import Enum
from typing import List, Optional, Dict, Any, Set


class Metric(str, Enum):
    """
    Metrics tracked per canonical identity and per date.
    Row metrics come from the paged contribution source, detail metrics from enrichment.
    """
    CONTRIBUTIONS = 'contributions'
    ADDED_LINES = 'added_lines'
    REMOVED_LINES = 'removed_lines'
    TASKS = 'tasks'
    FILES_ADDED = 'files_added'
    FILES_DELETED = 'files_deleted'
    FILES_MODIFIED = 'files_modified'

    @classmethod
    def parse(cls, value: Any) -> 'Metric':
        if isinstance(value, cls):
            return value
        text = str(value or '').strip()
        # accept the upstream camelCase spelling too (addedLines -> added_lines)
        snake = ''.join('_' + c.lower() if c.isupper() else c for c in text).lstrip('_')
        for m in cls:
            if m.value in (text.lower(), snake) or m.name.lower() == text.lower():
                return m
        raise ValueError(f"Unknown metric: {value!r}")


ROW_METRICS = (Metric.CONTRIBUTIONS, Metric.ADDED_LINES, Metric.REMOVED_LINES)
DETAIL_METRICS = (Metric.TASKS, Metric.FILES_ADDED, Metric.FILES_DELETED, Metric.FILES_MODIFIED)

METRIC_LABELS = {
    Metric.CONTRIBUTIONS: 'Commits',
    Metric.ADDED_LINES: 'Modified Lines',
    Metric.REMOVED_LINES: 'Optimized Lines',
    Metric.TASKS: 'Tasks',
    Metric.FILES_ADDED: 'Files Added',
    Metric.FILES_DELETED: 'Files Deleted',
    Metric.FILES_MODIFIED: 'Files Modified',
}


def empty_metrics() -> Dict[Metric, int]:
    return {m: 0 for m in Metric}


class DateRange:
    """Inclusive date range with ISO (YYYY-MM-DD) bounds."""

    def __init__(self, start: str, end: str):
        self.start = (start or '').strip()[:10]
        self.end = (end or '').strip()[:10]

    def is_valid(self) -> bool:
        """Both bounds are real calendar dates and start is not after end."""
        try:
            start = date_cls.fromisoformat(self.start)
            end = date_cls.fromisoformat(self.end)
        except ValueError:
            return False
        return start <= end

    def __eq__(self, other):
        return isinstance(other, DateRange) and (self.start, self.end) == (other.start, other.end)

    def __hash__(self):
        return hash((self.start, self.end))

    def __repr__(self):
        return f"DateRange({self.start!r}, {self.end!r})"


class RawContributionRecord:
    """
    One row of a page returned by the paged contribution source. Read-only once built.
    """
    __slots__ = ('_repository', '_raw_login', '_raw_display_name', '_raw_email', '_date',
                 '_contributions', '_added_lines', '_removed_lines')

    def __init__(self, repository: str, date: str, contributions: int = 0, added_lines: int = 0, removed_lines: int = 0,
                 raw_login: Optional[str] = None, raw_display_name: Optional[str] = None, raw_email: Optional[str] = None):
        self._repository = repository
        self._raw_login = raw_login
        self._raw_display_name = raw_display_name
        self._raw_email = raw_email
        self._date = date
        self._contributions = int(contributions or 0)
        self._added_lines = int(added_lines or 0)
        self._removed_lines = int(removed_lines or 0)

    repository = property(lambda self: self._repository)
    raw_login = property(lambda self: self._raw_login)
    raw_display_name = property(lambda self: self._raw_display_name)
    raw_email = property(lambda self: self._raw_email)
    date = property(lambda self: self._date)
    contributions = property(lambda self: self._contributions)
    added_lines = property(lambda self: self._added_lines)
    removed_lines = property(lambda self: self._removed_lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'repository': self._repository,
            'memberLogin': self._raw_login,
            'memberDisplay': self._raw_display_name,
            'memberEmail': self._raw_email,
            'date': self._date,
            'contributions': self._contributions,
            'addedLines': self._added_lines,
            'removedLines': self._removed_lines,
        }

    def __eq__(self, other):
        return isinstance(other, RawContributionRecord) and self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"RawContributionRecord({self._repository!r}, {self._raw_login or self._raw_display_name!r}, {self._date!r})"


class CanonicalIdentity:
    """
    Normalized contributor identity. The alias set only ever grows.
    """
    def __init__(self, canonical_key: str, display_label: str, aka: Optional[Set[str]] = None):
        self.canonical_key = canonical_key
        self.display_label = display_label
        self.aka = set(aka or ())

    def __repr__(self):
        return f"CanonicalIdentity({self.canonical_key!r}, {self.display_label!r}, aka={sorted(self.aka)})"


class ContributionRow:
    """
    Normalized contribution row, derived 1:1 from a RawContributionRecord plus its resolved identity.
    """
    def __init__(self, repository: str, canonical_key: str, display_label: str, date: str, contributions: int = 0,
                 added_lines: int = 0, removed_lines: int = 0, login: Optional[str] = None):
        self.repository = repository
        self.canonical_key = canonical_key
        self.display_label = display_label
        self.login = login  # username-like login, used as the identity for detail queries
        self.date = date
        self.contributions = int(contributions or 0)
        self.added_lines = int(added_lines or 0)
        self.removed_lines = int(removed_lines or 0)

    @property
    def row_id(self) -> str:
        return f"{self.repository}|{self.canonical_key}|{self.date}"

    def metrics(self) -> Dict[Metric, int]:
        return {
            Metric.CONTRIBUTIONS: self.contributions,
            Metric.ADDED_LINES: self.added_lines,
            Metric.REMOVED_LINES: self.removed_lines,
        }

    def __repr__(self):
        return f"ContributionRow({self.row_id!r}, contributions={self.contributions})"


class ReportPage:
    """
    One page of the paged contribution source. Page indices are 1-based.
    """
    def __init__(self, total_rows: int, page: int, per_page: int, rows: Optional[List[RawContributionRecord]] = None):
        self.total_rows = int(total_rows or 0)
        self.page = int(page)
        self.per_page = int(per_page)
        self.rows = list(rows or [])

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalRows': self.total_rows,
            'page': self.page,
            'perPage': self.per_page,
            'rows': [r.to_dict() for r in self.rows],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReportPage':
        # local import: normalize.util depends on this module
        from normalize.util import normalize_record
        return cls(
            total_rows=data.get('totalRows', data.get('total_rows', 0)),
            page=data.get('page', 1),
            per_page=data.get('perPage', data.get('per_page', 50)),
            rows=[normalize_record(r) for r in (data.get('rows') or [])],
        )


class DetailRecord:
    """
    Task-level (pull request) record returned by the detail source for one enrichment unit.
    """
    def __init__(self, id: str, task_ref: str, branch_name: str = 'unknown', file_change_count: int = 0, files_added: int = 0,
                 files_deleted: int = 0, files_modified: int = 0, commit_name: str = '', approver: Optional[str] = None,
                 date: str = '', external_link: str = ''):
        self.id = id
        self.task_ref = task_ref
        self.branch_name = branch_name
        self.file_change_count = int(file_change_count or 0)
        self.files_added = int(files_added or 0)
        self.files_deleted = int(files_deleted or 0)
        self.files_modified = int(files_modified or 0)
        self.commit_name = commit_name
        self.approver = approver
        self.date = date
        self.external_link = external_link

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'task': self.task_ref,
            'branchName': self.branch_name,
            'fileChanges': self.file_change_count,
            'filesAdded': self.files_added,
            'filesDeleted': self.files_deleted,
            'filesModified': self.files_modified,
            'commitName': self.commit_name,
            'approvedBy': self.approver,
            'date': self.date,
            'pullRequestUrl': self.external_link,
        }


class EnrichmentUnit:
    """
    One (repository, identity, date) triple that needs a secondary detail fetch.
    `identity` is the handle sent upstream; `canonical_key` is where results are added.
    """
    def __init__(self, repository: str, canonical_key: str, identity: str, date: str):
        self.repository = repository
        self.canonical_key = canonical_key
        self.identity = identity
        self.date = date

    @property
    def key(self) -> str:
        return f"{self.repository}|{self.canonical_key}|{self.date}"

    def __eq__(self, other):
        return isinstance(other, EnrichmentUnit) and self.key == other.key

    def __hash__(self):
        return hash(self.key)

    def __repr__(self):
        return f"EnrichmentUnit({self.key!r})"


class ProgressEvent:
    """Transient progress notification."""

    def __init__(self, label: str, processed: int, total: int):
        self.label = label
        self.processed = processed
        self.total = total

    def __eq__(self, other):
        return isinstance(other, ProgressEvent) and (self.label, self.processed, self.total) == (other.label, other.processed, other.total)

    def __repr__(self):
        return f"ProgressEvent({self.label!r}, {self.processed}/{self.total})"
