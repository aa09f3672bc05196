import csv
import io
import json
import unittest

from normalize.models import ContributionRow, DetailRecord, EnrichmentUnit
from pipeline.engine import AggregationEngine
from report.renderer import render, render_rows_csv, render_tasks_csv


def sample_snapshot():
    engine = AggregationEngine()
    engine.ingest([
        ContributionRow('a/b', 'alice', 'Alice <script>', '2024-01-01', 3, 10, 2),
        ContributionRow('a/b', 'alice', 'Alice <script>', '2024-01-02', 1, 1, 0),
        ContributionRow('a/b', 'bob', 'Bob', '2024-01-01', 2, 50, 5),
    ])
    return engine.snapshot()


class TestRender(unittest.TestCase):
    def setUp(self):
        self.snap = sample_snapshot()

    def test_text_ranks_by_metric(self):
        out = render(self.snap, fmt='text', metric='added_lines')
        lines = out.splitlines()
        self.assertIn('Modified Lines', lines[0])
        self.assertTrue(lines[1].strip().startswith('1. Bob'))

    def test_top_limits_rows(self):
        out = render(self.snap, fmt='text', top=1)
        self.assertEqual(len(out.splitlines()), 2)

    def test_markdown_table(self):
        out = render(self.snap, fmt='md')
        self.assertIn('| # | Member | Commits |', out)
        self.assertIn('| 1 | Alice <script> | 4 |', out)

    def test_csv_has_every_metric(self):
        out = render(self.snap, fmt='csv')
        rows = list(csv.reader(io.StringIO(out)))
        self.assertEqual(rows[0][:3], ['key', 'label', 'contributions'])
        self.assertEqual(rows[1][:3], ['alice', 'Alice <script>', '4'])

    def test_json_includes_series(self):
        data = json.loads(render(self.snap, fmt='json'))
        self.assertEqual(data['metric'], 'contributions')
        self.assertEqual([r['key'] for r in data['ranking']], ['alice', 'bob'])
        self.assertEqual([p['date'] for p in data['series']['alice']], ['2024-01-01', '2024-01-02'])

    def test_visible_filter(self):
        data = json.loads(render(self.snap, fmt='json', visible={'bob'}))
        self.assertEqual([r['key'] for r in data['ranking']], ['bob'])

    def test_html_escapes_labels(self):
        out = render(self.snap, fmt='html', scope='2024-01-01 to 2024-01-31')
        self.assertIn('<h1>Contribution Report: Commits</h1>', out)
        self.assertIn('Alice &lt;script&gt;', out)
        self.assertNotIn('Alice <script>', out)
        self.assertIn('Scope: 2024-01-01 to 2024-01-31', out)

    def test_empty_snapshot(self):
        empty = AggregationEngine().snapshot()
        self.assertEqual(render(empty), 'No contributions found.')
        self.assertIn('No contributions found.', render(empty, fmt='html'))


class TestExports(unittest.TestCase):
    def test_tasks_csv(self):
        unit = EnrichmentUnit('a/b', 'alice', 'alice', '2024-01-01')
        d = DetailRecord('PR_1', '#7', 'feature', 3, 1, 0, 2, 'Fix "quotes"', None, '2024-01-01T12:00:00Z', 'https://x/7')
        out = render_tasks_csv([{'unit': unit, 'detail': d}], labels={'alice': 'Alice'})
        lines = out.splitlines()
        self.assertEqual(lines[0], '"Repository","Member","Date","Task","Branch Name","File Changes","Commit Name","Approved By","Task Date","Pull Request URL"')
        self.assertEqual(lines[1], '"a/b","Alice","2024-01-01","#7","feature","3","Fix ""quotes""","","2024-01-01T12:00:00Z","https://x/7"')

    def test_rows_csv_newest_first(self):
        rows = [
            ContributionRow('a/b', 'alice', 'Alice', '2024-01-01', 3, 10, 2),
            ContributionRow('a/b', 'bob', 'Bob', '2024-01-02', 1, 1, 0),
        ]
        out = list(csv.reader(io.StringIO(render_rows_csv(rows))))
        self.assertEqual(out[0][1], 'Row ID')
        self.assertEqual(out[1][:3], ['a/b', 'a/b|bob|2024-01-02', 'Bob'])


if __name__ == '__main__':
    unittest.main()
