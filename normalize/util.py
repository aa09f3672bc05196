"""
Normalization utility helpers.
Small helpers to turn raw upstream payloads into normalize.models entities.
"""
from typing import Dict, Any, Optional
from normalize.models import RawContributionRecord, ContributionRow, DetailRecord
from normalize.identity import IdentityResolver, looks_like_username


def _first(raw: Dict[str, Any], *keys: str, default=None):
    for k in keys:
        val = raw.get(k)
        if val not in (None, ''):
            return val
    return default


def normalize_record(raw: Dict[str, Any]) -> RawContributionRecord:
    """Create a RawContributionRecord from an upstream row dict.
    Accepts both the camelCase wire keys (memberLogin, addedLines, ...) and snake_case keys.
    """
    if isinstance(raw, RawContributionRecord):
        return raw
    return RawContributionRecord(
        repository=_first(raw, 'repository', 'repo', default=''),
        date=str(_first(raw, 'date', default=''))[:10],
        contributions=_first(raw, 'contributions', default=0),
        added_lines=_first(raw, 'addedLines', 'added_lines', default=0),
        removed_lines=_first(raw, 'removedLines', 'removed_lines', default=0),
        raw_login=_first(raw, 'memberLogin', 'raw_login', 'login', 'member'),
        raw_display_name=_first(raw, 'memberDisplay', 'raw_display_name', 'name'),
        raw_email=_first(raw, 'memberEmail', 'raw_email', 'email'),
    )


def normalize_detail(raw: Dict[str, Any]) -> DetailRecord:
    """Create a DetailRecord from a detail-source dict (camelCase or snake_case)."""
    if isinstance(raw, DetailRecord):
        return raw
    return DetailRecord(
        id=str(_first(raw, 'id', default='')),
        task_ref=_first(raw, 'task', 'task_ref', default=''),
        branch_name=_first(raw, 'branchName', 'branch_name', default='unknown'),
        file_change_count=_first(raw, 'fileChanges', 'file_change_count', default=0),
        files_added=_first(raw, 'filesAdded', 'files_added', default=0),
        files_deleted=_first(raw, 'filesDeleted', 'files_deleted', default=0),
        files_modified=_first(raw, 'filesModified', 'files_modified', default=0),
        commit_name=_first(raw, 'commitName', 'commit_name', default=''),
        approver=_first(raw, 'approvedBy', 'approver'),
        date=_first(raw, 'date', default=''),
        external_link=_first(raw, 'pullRequestUrl', 'external_link', 'url', default=''),
    )


def to_contribution_row(record: RawContributionRecord, resolver: IdentityResolver) -> ContributionRow:
    """Resolve the record's identity and build the normalized row."""
    key, label = resolver.resolve(record.raw_login, record.raw_display_name, record.raw_email)
    login = (record.raw_login or '').strip()
    if not looks_like_username(login):
        display = (record.raw_display_name or '').strip()
        login = display if looks_like_username(display) else ''
    return ContributionRow(
        repository=record.repository,
        canonical_key=key,
        display_label=label,
        date=record.date,
        contributions=record.contributions,
        added_lines=record.added_lines,
        removed_lines=record.removed_lines,
        login=login or None,
    )


def resolve_member_identifier(row: ContributionRow) -> str:
    """Handle to send upstream for detail queries: login, then display label, then canonical key."""
    for candidate in (row.login, row.display_label, row.canonical_key):
        value: Optional[str] = (candidate or '').strip()
        if value:
            return value
    return 'unknown'
