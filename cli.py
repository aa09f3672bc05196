"""
CLI entry point for contrib-report. Wires the pipeline: collect -> resolve identities -> aggregate -> enrich -> report
"""

import argparse
import logging
import os
import sys
from datetime import datetime, timezone

from errors import ContribReportError
from ingest.github import GitHubClient
from normalize.models import DateRange, Metric
from pipeline.builder import ReportBuilder
from report.renderer import render, render_rows_csv, render_tasks_csv
from settings import load_settings
from storage.cache import BoundedCache
from storage.retry import configure_retry

OUTPUT_FORMATS = ('text', 'md', 'csv', 'json', 'html')


def _print_progress(event):
    if event is None:
        return
    print(f"{event.label}: {event.processed}/{event.total}", file=sys.stderr)


def _resolve_token(args, parser):
    """Resolve the GitHub token from the CLI flag or GITHUB_TOKEN; parser.error() if missing."""
    token = args.github_token if args.github_token else os.getenv('GITHUB_TOKEN')
    if not token:
        parser.error('Missing required token: github_token (CLI flag --github_token or env GITHUB_TOKEN)')
    args.github_token = token


def _parse_metric(value: str, parser) -> Metric:
    try:
        return Metric.parse(value)
    except ValueError:
        parser.error(f"Unknown metric {value!r}; choose one of: {', '.join(m.value for m in Metric)}")


def _write_file(path: str, content: str):
    out_dir = os.path.dirname(path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    # newline='' keeps csv line endings as written
    with open(path, 'w', encoding='utf-8', newline='') as fh:
        fh.write(content)


def write_output(rendered: str, args):
    """Write the report to --out-file, or print it."""
    if args.out_file:
        _write_file(args.out_file, rendered)
        print(f"Wrote report to {args.out_file}")
    else:
        print(rendered)


def _resolve_repositories(args, client: GitHubClient):
    repos = list(args.repo or [])
    if args.org:
        repos.extend(client.list_repositories(args.org))
    return repos


def run_report(args, settings):
    """Build the report for args. Returns (builder, snapshot)."""
    history_cache = BoundedCache(ttl_seconds=settings.cache_ttl_seconds, max_entries=settings.cache_max_entries)
    page_cache = BoundedCache(ttl_seconds=settings.cache_ttl_seconds, max_entries=settings.cache_max_entries)
    try:
        client = GitHubClient(args.github_token, timeout=settings.request_timeout, history_cache=history_cache,
                              detail_max_pages=settings.detail_max_pages)
        repos = _resolve_repositories(args, client)
        builder = ReportBuilder(client, cache=page_cache, per_page=settings.per_page,
                                request_delay=settings.request_delay, top_n=settings.top_n)
        builder.on_progress(_print_progress)
        snapshot = builder.start_build(repos, DateRange(args.start, args.end),
                                       include_enrichment=not args.no_enrich, member_filter=args.member)
        return builder, snapshot
    finally:
        history_cache.close()
        page_cache.close()


def main(argv=None):
    parser = argparse.ArgumentParser(description="GitHub Contribution Report CLI")
    parser.add_argument("--repo", action="append", default=[], help="Repository owner/name (repeatable)")
    parser.add_argument("--org", type=str, default="", help="Include every repository of this organization")
    parser.add_argument("--start", type=str, required=True, help="Start date (YYYY-MM-DD)")
    parser.add_argument("--end", type=str, required=True, help="End date (YYYY-MM-DD), inclusive")
    parser.add_argument("--github_token", type=str)
    parser.add_argument("--member", type=str, default=None, help="Only aggregate this contributor (login, name or email)")
    parser.add_argument("--no-enrich", action="store_true", help="Skip the task/file count pass")
    parser.add_argument("--metric", type=str, default=Metric.CONTRIBUTIONS.value, help="Metric to rank by")
    parser.add_argument("--top", type=int, default=None, help="Number of contributors to show (default from settings)")
    parser.add_argument("--output", type=str, choices=OUTPUT_FORMATS, default="text", help="Output format")
    parser.add_argument("--out-file", type=str, default="", help="Output file path. If omitted the report is printed")
    parser.add_argument("--tasks-csv", type=str, default="", help="Also export fetched task records to this CSV file")
    parser.add_argument("--rows-csv", type=str, default="", help="Also export every contribution row to this CSV file")
    parser.add_argument("--config", type=str, default=None, help="Path to a settings YAML file")
    # retry/backoff knobs: optional CLI overrides. Environment variables CONTRIB_MAX_RETRIES, CONTRIB_BACKOFF_BASE,
    # CONTRIB_BACKOFF_JITTER, CONTRIB_MAX_BACKOFF may also be used to set defaults.
    parser.add_argument("--max-retries", type=int, default=None, help="Maximum retry attempts for HTTP requests (overrides CONTRIB_MAX_RETRIES env)")
    parser.add_argument("--backoff-base", type=float, default=None, help="Base backoff seconds (overrides CONTRIB_BACKOFF_BASE env)")
    parser.add_argument("--backoff-jitter", type=float, default=None, help="Jitter seconds added to backoff (overrides CONTRIB_BACKOFF_JITTER env)")
    parser.add_argument("--max-backoff", type=float, default=None, help="Maximum backoff cap in seconds (overrides CONTRIB_MAX_BACKOFF env)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    metric = _parse_metric(args.metric, parser)
    if not args.repo and not args.org:
        parser.error('Provide at least one --repo or an --org')
    _resolve_token(args, parser)

    configure_retry(max_retries=args.max_retries, backoff_base=args.backoff_base, backoff_jitter=args.backoff_jitter, max_backoff=args.max_backoff)

    try:
        settings = load_settings(args.config)
        builder, snapshot = run_report(args, settings)
    except ContribReportError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    if snapshot is None:
        print("Error: the build was cancelled", file=sys.stderr)
        return 1

    if builder.enrichment_failures:
        print(f"Warning: {len(builder.enrichment_failures)} task lookup(s) failed and were counted as zero", file=sys.stderr)

    rendered = render(
        snapshot,
        fmt=args.output,
        metric=metric,
        top=args.top if args.top is not None else settings.top_n,
        generated_at=datetime.now(timezone.utc).isoformat(),
        scope=f"{args.start} to {args.end}",
    )
    write_output(rendered, args)

    if args.tasks_csv:
        _write_file(args.tasks_csv, render_tasks_csv(builder.detail_records(), snapshot.labels))
        print(f"Wrote tasks to {args.tasks_csv}")
    if args.rows_csv:
        _write_file(args.rows_csv, render_rows_csv(builder.rows()))
        print(f"Wrote rows to {args.rows_csv}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
