"""In-memory stand-ins for the paged contribution source and the detail source."""
from normalize.models import RawContributionRecord, ReportPage


class FakeSource:
    """
    Serves `total` rows, one per contributor, across pages. `fail_on` page indices raise,
    `on_fetch(page)` runs before each fetch.
    """

    def __init__(self, total, logins=None, fail_on=(), on_fetch=None, details=None, detail_errors=()):
        self.total = total
        self.logins = logins
        self.fail_on = set(fail_on)
        self.on_fetch = on_fetch
        self.calls = []
        self.details = details or {}
        self.detail_errors = set(detail_errors)
        self.detail_calls = []

    def row(self, i):
        login = self.logins[i % len(self.logins)] if self.logins else f"user{i}"
        return RawContributionRecord('a/b', '2024-01-01', contributions=1, added_lines=2, removed_lines=1, raw_login=login)

    def fetch_report_page(self, selector, date_range, page, per_page):
        self.calls.append(page)
        if self.on_fetch is not None:
            self.on_fetch(page)
        if page in self.fail_on:
            raise RuntimeError(f"boom on page {page}")
        start = (page - 1) * per_page
        count = max(0, min(per_page, self.total - start))
        return ReportPage(self.total, page, per_page, [self.row(start + i) for i in range(count)])

    def fetch_unit_details(self, repository, identity, date):
        self.detail_calls.append((repository, identity, date))
        if identity in self.detail_errors:
            raise RuntimeError(f"detail lookup failed for {identity}")
        return list(self.details.get(identity, []))


def detail(id, files_added=0, files_deleted=0, files_modified=0):
    return {
        'id': id,
        'task': f"#{id}",
        'branchName': 'feature',
        'fileChanges': files_added + files_deleted + files_modified,
        'filesAdded': files_added,
        'filesDeleted': files_deleted,
        'filesModified': files_modified,
        'commitName': 'change',
        'date': '2024-01-01',
        'pullRequestUrl': f"https://github.com/a/b/pull/{id}",
    }
