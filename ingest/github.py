"""
GitHub ingestion client.

Implements the two upstream sources the report pipeline consumes:
- the paged contribution source (commit counts and line changes per author per day),
- the per-unit detail source (pull requests authored on a given day, with file counts).
Every call requires a token and fails fast with NotAuthenticated otherwise.
"""
import logging
from collections import OrderedDict
from datetime import date as date_cls, timedelta
from typing import List, Dict, Any, Optional, Iterable

from errors import NotAuthenticated, UpstreamRequestFailed
from normalize.models import RawContributionRecord, ReportPage, DetailRecord, DateRange
from storage.cache import BoundedCache, CacheKey, normalize_selector
from storage.retry import perform_request, RetryPolicy

logger = logging.getLogger(__name__)

HISTORY_QUERY = """
query CommitHistory($owner: String!, $name: String!, $since: GitTimestamp!, $until: GitTimestamp!, $cursor: String) {
  repository(owner: $owner, name: $name) {
    defaultBranchRef {
      target {
        ... on Commit {
          history(first: 100, since: $since, until: $until, after: $cursor) {
            pageInfo { hasNextPage endCursor }
            nodes {
              committedDate
              additions
              deletions
              author { user { login } email name }
            }
          }
        }
      }
    }
  }
}
"""

ROW_DETAILS_QUERY = """
query RowDetails($query: String!, $cursor: String) {
  search(query: $query, type: ISSUE, first: 25, after: $cursor) {
    pageInfo { hasNextPage endCursor }
    nodes {
      ... on PullRequest {
        id
        number
        title
        url
        headRefName
        changedFiles
        mergedAt
        updatedAt
        createdAt
        commits(last: 1) { nodes { commit { messageHeadline committedDate } } }
        reviews(states: APPROVED, last: 10) { nodes { author { login } submittedAt } }
      }
    }
  }
}
"""


def split_repository(full_name: str):
    owner, _, name = (full_name or '').partition('/')
    if not owner or not name:
        raise UpstreamRequestFailed(f"repository must be in owner/name format: {full_name!r}")
    return owner, name


def history_window(date_range: DateRange):
    """GitTimestamp bounds; the upper bound is exclusive upstream, so it is pushed one day forward."""
    until = date_cls.fromisoformat(date_range.end) + timedelta(days=1)
    return f"{date_range.start}T00:00:00Z", f"{until.isoformat()}T00:00:00Z"


def fold_commits(repository: str, commits: Iterable[Dict[str, Any]]) -> List[RawContributionRecord]:
    """Fold commit nodes into one record per (author, day) with summed line changes."""
    buckets: "OrderedDict[tuple, Dict[str, Any]]" = OrderedDict()
    for commit in commits:
        author = commit.get('author') or {}
        login = ((author.get('user') or {}).get('login') or '').strip()
        email = (author.get('email') or '').strip()
        name = (author.get('name') or '').strip()
        day = (commit.get('committedDate') or '')[:10]
        bucket_key = (login or email or name or 'unknown', day)
        bucket = buckets.setdefault(bucket_key, {'login': login, 'email': email, 'name': name, 'count': 0, 'added': 0, 'removed': 0})
        bucket['count'] += 1
        bucket['added'] += int(commit.get('additions') or 0)
        bucket['removed'] += int(commit.get('deletions') or 0)
    return [
        RawContributionRecord(
            repository=repository,
            date=day,
            contributions=b['count'],
            added_lines=b['added'],
            removed_lines=b['removed'],
            raw_login=b['login'] or None,
            raw_display_name=b['name'] or None,
            raw_email=b['email'] or None,
        )
        for (_, day), b in buckets.items()
    ]


def sort_records(records: List[RawContributionRecord]) -> List[RawContributionRecord]:
    """Date descending, then contributions descending."""
    return sorted(records, key=lambda r: (r.date, r.contributions), reverse=True)


def latest_approver(node: Dict[str, Any]) -> Optional[str]:
    reviews = [r for r in ((node.get('reviews') or {}).get('nodes') or []) if r and (r.get('author') or {}).get('login')]
    if not reviews:
        return None
    reviews.sort(key=lambda r: r.get('submittedAt') or '', reverse=True)
    return reviews[0]['author']['login']


def detail_from_node(node: Dict[str, Any], file_counts: Dict[str, int]) -> DetailRecord:
    commits = (node.get('commits') or {}).get('nodes') or []
    latest = next((c.get('commit') for c in commits if c and c.get('commit')), None) or {}
    headline = (latest.get('messageHeadline') or '').strip()
    return DetailRecord(
        id=node.get('id'),
        task_ref=f"#{node.get('number')}",
        branch_name=node.get('headRefName') or 'unknown',
        file_change_count=node.get('changedFiles') or 0,
        files_added=file_counts.get('added', 0),
        files_deleted=file_counts.get('deleted', 0),
        files_modified=file_counts.get('modified', 0),
        commit_name=headline or node.get('title') or '',
        approver=latest_approver(node),
        date=node.get('mergedAt') or node.get('updatedAt') or node.get('createdAt') or '',
        external_link=node.get('url') or '',
    )


class GitHubClient:
    """GitHub client for paged contribution reports and per-day pull request details."""

    def __init__(self, token: Optional[str], base_url: str = None, graphql_url: str = None,
                 timeout: Optional[float] = None, history_cache: Optional[BoundedCache] = None,
                 policy: Optional[RetryPolicy] = None, detail_max_pages: int = 5):
        self.token = token
        self.base_url = (base_url or "https://api.github.com").rstrip('/')
        self.graphql_url = graphql_url or f"{self.base_url}/graphql"
        self.headers = {
            "Authorization": f"Bearer {self.token}" if self.token else "",
            "Accept": "application/vnd.github+json",
        }
        self.timeout = timeout
        self.policy = policy
        self.detail_max_pages = int(detail_max_pages)
        # full commit history per (repository, range); pages are sliced from it
        self.history_cache = history_cache if history_cache is not None else BoundedCache()

    def _require_token(self):
        if not self.token:
            raise NotAuthenticated()

    def _request(self, method: str, url: str, params: Dict[str, Any] = None, json_body: Dict[str, Any] = None) -> Any:
        res = perform_request(method, url, headers=self.headers, params=params, json_body=json_body, timeout=self.timeout, policy=self.policy)
        status = res.get('status', 0)
        if status == 401:
            raise NotAuthenticated(f"GitHub rejected the token: {res.get('response')}")
        if not 200 <= status < 300:
            raise UpstreamRequestFailed(f"{method} {url} failed: {res.get('response')}", status=status)
        return res.get('response')

    def _graphql(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        body = self._request('POST', self.graphql_url, json_body={'query': query, 'variables': variables}) or {}
        errors = body.get('errors') if isinstance(body, dict) else None
        if errors:
            raise UpstreamRequestFailed('; '.join(e.get('message', str(e)) for e in errors))
        data = body.get('data') if isinstance(body, dict) else None
        if not data:
            raise UpstreamRequestFailed('GitHub GraphQL response missing data')
        return data

    def _fetch_history(self, repository: str, date_range: DateRange) -> List[RawContributionRecord]:
        key = CacheKey(repository, date_range.start, date_range.end)
        cached = self.history_cache.get(key)
        if cached is not None:
            return [RawContributionRecord(**r) for r in cached]

        owner, name = split_repository(repository)
        since, until = history_window(date_range)
        nodes: List[Dict[str, Any]] = []
        cursor = None
        while True:
            data = self._graphql(HISTORY_QUERY, {'owner': owner, 'name': name, 'since': since, 'until': until, 'cursor': cursor})
            repo = data.get('repository') or {}
            target = ((repo.get('defaultBranchRef') or {}).get('target') or {})
            history = target.get('history') or {}
            nodes.extend(n for n in (history.get('nodes') or []) if n)
            page_info = history.get('pageInfo') or {}
            if not page_info.get('hasNextPage') or not page_info.get('endCursor'):
                break
            cursor = page_info['endCursor']

        records = fold_commits(repository, nodes)
        self.history_cache.put(key, [_record_kwargs(r) for r in records])
        return records

    def fetch_report_page(self, selector: Iterable[str], date_range: DateRange, page: int = 1, per_page: int = 50) -> ReportPage:
        """Return one page of the merged, sorted contribution rows across the selected repositories."""
        self._require_token()
        repos = normalize_selector(selector)
        if not repos:
            raise UpstreamRequestFailed('selector must name at least one repository')
        records: List[RawContributionRecord] = []
        for repository in repos:
            records.extend(self._fetch_history(repository, date_range))
        records = sort_records(records)
        start = (int(page) - 1) * int(per_page)
        return ReportPage(total_rows=len(records), page=page, per_page=per_page, rows=records[start:start + int(per_page)])

    def _fetch_file_counts(self, repository: str, number: int, per_page: int = 100) -> Dict[str, int]:
        owner, name = split_repository(repository)
        url = f"{self.base_url}/repos/{owner}/{name}/pulls/{number}/files"
        totals = {'added': 0, 'deleted': 0, 'modified': 0}
        page = 1
        while True:
            files = self._request('GET', url, params={'per_page': per_page, 'page': page})
            if not isinstance(files, list) or not files:
                break
            for f in files:
                status = (f.get('status') or '').lower()
                if status == 'added':
                    totals['added'] += 1
                elif status == 'removed':
                    totals['deleted'] += 1
                else:
                    totals['modified'] += 1
            if len(files) < per_page:
                break
            page += 1
        return totals

    def fetch_unit_details(self, repository: str, identity: str, date: str) -> List[DetailRecord]:
        """Pull requests by `identity` in `repository` updated on `date`, newest first."""
        self._require_token()
        split_repository(repository)
        if not (identity or '').strip():
            raise UpstreamRequestFailed('identity must be a non-empty string')
        query = f"repo:{repository} is:pr author:{identity.strip()} updated:{date}..{date}"
        rows: List[DetailRecord] = []
        cursor = None
        for _ in range(self.detail_max_pages):
            data = self._graphql(ROW_DETAILS_QUERY, {'query': query, 'cursor': cursor})
            search = data.get('search') or {}
            for node in (n for n in (search.get('nodes') or []) if n):
                try:
                    counts = self._fetch_file_counts(repository, node.get('number'))
                except UpstreamRequestFailed as exc:
                    logger.warning("failed to fetch file counts for %s PR #%s: %s", repository, node.get('number'), exc)
                    counts = {}
                rows.append(detail_from_node(node, counts))
            page_info = search.get('pageInfo') or {}
            if not page_info.get('hasNextPage') or not page_info.get('endCursor'):
                break
            cursor = page_info['endCursor']
        rows.sort(key=lambda d: d.date, reverse=True)
        return rows

    def list_repositories(self, org: Optional[str] = None, per_page: int = 100) -> List[str]:
        """owner/name of every repository visible to the token (or in `org`)."""
        self._require_token()
        url = f"{self.base_url}/orgs/{org}/repos" if org else f"{self.base_url}/user/repos"
        names: List[str] = []
        page = 1
        while True:
            data = self._request('GET', url, params={'page': page, 'per_page': per_page})
            if not isinstance(data, list):
                break
            names.extend(r['full_name'] for r in data if r.get('full_name'))
            if len(data) < per_page:
                break
            page += 1
        return names


def _record_kwargs(record: RawContributionRecord) -> Dict[str, Any]:
    return {
        'repository': record.repository,
        'date': record.date,
        'contributions': record.contributions,
        'added_lines': record.added_lines,
        'removed_lines': record.removed_lines,
        'raw_login': record.raw_login,
        'raw_display_name': record.raw_display_name,
        'raw_email': record.raw_email,
    }
