"""
Report renderer: text/Markdown/CSV/JSON/HTML summaries of an aggregate snapshot.
HTML is rendered with Jinja2 using report/templates/report.html.j2.
"""

from typing import Optional, List, Dict, Any, Iterable
import os
import json
import io
import csv

from jinja2 import Environment, FileSystemLoader, select_autoescape

from normalize.models import Metric, METRIC_LABELS
from scoring import ranking

TASK_HEADERS = ['Repository', 'Member', 'Date', 'Task', 'Branch Name', 'File Changes', 'Commit Name',
                'Approved By', 'Task Date', 'Pull Request URL']
ROW_HEADERS = ['Repository', 'Row ID', 'Member', 'Date', 'Commits', 'Modified Lines', 'Optimized Lines']


def _ranked(snapshot, metric: Metric, top: Optional[int], visible: Optional[Iterable[str]]) -> List[Dict[str, Any]]:
    rows = ranking.filter_visible(ranking.top_n(snapshot, metric, None), visible)
    return rows if top is None else rows[:max(0, int(top))]


def render_text(rows: List[Dict[str, Any]], metric: Metric) -> str:
    """Plain-text ranking, one identity per line."""
    if not rows:
        return "No contributions found."
    width = max(len(r['label']) for r in rows)
    lines = [f"Top contributors by {METRIC_LABELS[metric]}"]
    for i, r in enumerate(rows, 1):
        lines.append(f"{i:>3}. {r['label']:<{width}}  {r[metric.value]}")
    return "\n".join(lines)


def render_markdown(rows: List[Dict[str, Any]], metric: Metric) -> str:
    md = [f"# Contribution Report: {METRIC_LABELS[metric]}\n"]
    if not rows:
        md.append("_No contributions found._")
        return "\n".join(md)
    md.append("| # | Member | " + " | ".join(METRIC_LABELS[m] for m in Metric) + " |")
    md.append("|---|---|" + "---|" * len(Metric))
    for i, r in enumerate(rows, 1):
        md.append(f"| {i} | {r['label']} | " + " | ".join(str(r[m.value]) for m in Metric) + " |")
    return "\n".join(md)


def render_csv(rows: List[Dict[str, Any]]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(['key', 'label'] + [m.value for m in Metric])
    for r in rows:
        writer.writerow([r['key'], r['label']] + [r[m.value] for m in Metric])
    return output.getvalue()


def render_json(snapshot, rows: List[Dict[str, Any]], metric: Metric) -> str:
    """Ranking plus the full per-date series of every ranked identity."""
    payload = {
        'metric': metric.value,
        'ranking': rows,
        'series': {r['key']: ranking.series_points(snapshot, r['key']) for r in rows},
    }
    return json.dumps(payload, indent=2)


def _render_html(snapshot, rows: List[Dict[str, Any]], metric: Metric, generated_at: Optional[str], scope: Optional[str]) -> str:
    tmpl_dir = os.path.join(os.path.dirname(__file__), 'templates')
    env = Environment(loader=FileSystemLoader(tmpl_dir), autoescape=select_autoescape(['html', 'xml', 'j2']))
    tmpl = env.get_template('report.html.j2')
    context = {
        'metric': metric,
        'metric_label': METRIC_LABELS[metric],
        'metrics': list(Metric),
        'labels': METRIC_LABELS,
        'rows': rows,
        'series': {r['key']: ranking.series_points(snapshot, r['key']) for r in rows},
        'generated_at': generated_at,
        'scope': scope,
    }
    return tmpl.render(**context)


def render(
    snapshot,
    fmt: str = 'text',
    metric: Any = Metric.CONTRIBUTIONS,
    top: Optional[int] = ranking.DEFAULT_TOP_N,
    visible: Optional[Iterable[str]] = None,
    generated_at: Optional[str] = None,
    scope: Optional[str] = None,
) -> str:
    """Main render function. `visible` restricts the ranking to those identity keys."""
    m = Metric.parse(metric)
    rows = _ranked(snapshot, m, top, visible)
    fmt_l = (fmt or 'text').lower()
    if fmt_l in ('md', 'markdown'):
        return render_markdown(rows, m)
    if fmt_l == 'csv':
        return render_csv(rows)
    if fmt_l in ('html', 'htm'):
        return _render_html(snapshot, rows, m, generated_at, scope)
    if fmt_l in ('json', 'js'):
        return render_json(snapshot, rows, m)
    return render_text(rows, m)


def _csv_text(headers: List[str], records: Iterable[List[Any]]) -> str:
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator='\n')
    writer.writerow(headers)
    for rec in records:
        writer.writerow(['' if v is None else v for v in rec])
    return output.getvalue()


def render_tasks_csv(detail_rows: List[Dict[str, Any]], labels: Optional[Dict[str, str]] = None) -> str:
    """
    Task export: one line per detail record fetched during enrichment.
    detail_rows are the {'unit', 'detail'} dicts of AggregationEngine.detail_records().
    """
    labels = labels or {}
    records = []
    for item in detail_rows:
        unit, d = item['unit'], item['detail']
        records.append([
            unit.repository,
            labels.get(unit.canonical_key, unit.identity),
            unit.date,
            d.task_ref,
            d.branch_name,
            d.file_change_count,
            d.commit_name,
            d.approver,
            d.date,
            d.external_link,
        ])
    return _csv_text(TASK_HEADERS, records)


def render_rows_csv(rows) -> str:
    """Export of every ingested contribution row, newest first."""
    ordered = sorted(rows, key=lambda r: (r.date, r.contributions), reverse=True)
    return _csv_text(ROW_HEADERS, ([r.repository, r.row_id, r.display_label, r.date, r.contributions,
                                    r.added_lines, r.removed_lines] for r in ordered))


__all__ = ["render", "render_tasks_csv", "render_rows_csv"]
