import unittest

from errors import UpstreamRequestFailed
from normalize.identity import IdentityResolver
from normalize.models import ContributionRow, DetailRecord, Metric, RawContributionRecord
from pipeline.engine import AggregationEngine
from scoring.metrics import derive_detail_metrics
from scoring.ranking import filter_visible, series_points, top_n, total_from_series

from fakes import FakeSource, detail


def alice_rows():
    return [
        ContributionRow('a/b', 'alice', 'alice', '2024-01-01', 3, 10, 2, login='alice'),
        ContributionRow('a/b', 'alice', 'alice', '2024-01-02', 1, 1, 0, login='alice'),
    ]


class TestAggregation(unittest.TestCase):
    def test_totals_and_series(self):
        engine = AggregationEngine()
        snap = engine.ingest(alice_rows())
        totals = snap.totals['alice']
        self.assertEqual(totals[Metric.CONTRIBUTIONS], 4)
        self.assertEqual(totals[Metric.ADDED_LINES], 11)
        self.assertEqual(totals[Metric.REMOVED_LINES], 2)
        points = series_points(snap, 'alice')
        self.assertEqual([p['date'] for p in points], ['2024-01-01', '2024-01-02'])
        self.assertEqual([p['contributions'] for p in points], [3, 1])

    def test_batches_add_up_and_publish_each_time(self):
        engine = AggregationEngine()
        seen = []
        engine.subscribe(seen.append)
        rows = alice_rows()
        engine.ingest(rows[:1])
        engine.ingest(rows[1:])
        self.assertEqual(len(seen), 2)
        self.assertEqual(seen[0].totals['alice'][Metric.CONTRIBUTIONS], 3)
        self.assertEqual(seen[1].totals['alice'][Metric.CONTRIBUTIONS], 4)

    def test_snapshots_are_detached(self):
        engine = AggregationEngine()
        snap = engine.ingest(alice_rows())
        snap.totals['alice'][Metric.CONTRIBUTIONS] = 999
        self.assertEqual(engine.snapshot().totals['alice'][Metric.CONTRIBUTIONS], 4)

    def test_units_are_unique_per_repository_identity_date(self):
        engine = AggregationEngine()
        engine.ingest(alice_rows())
        engine.ingest(alice_rows()[:1])
        self.assertEqual([u.key for u in engine.units()], ['a/b|alice|2024-01-01', 'a/b|alice|2024-01-02'])

    def test_ingest_records_resolves_identities(self):
        engine = AggregationEngine()
        resolver = IdentityResolver()
        records = [
            RawContributionRecord('a/b', '2024-01-01', 2, raw_login='jdoe', raw_display_name='Jane Doe'),
            RawContributionRecord('a/b', '2024-01-02', 1, raw_display_name='Jane Doe'),
            RawContributionRecord('a/b', '2024-01-02', 5, raw_login='bob'),
        ]
        snap = engine.ingest_records(records, resolver)
        self.assertEqual(snap.totals['jdoe'][Metric.CONTRIBUTIONS], 3)
        self.assertEqual(snap.labels['jdoe'], 'Jane Doe')
        self.assertEqual(snap.totals['bob'][Metric.CONTRIBUTIONS], 5)

    def test_member_filter_keeps_one_contributor(self):
        engine = AggregationEngine()
        records = [
            RawContributionRecord('a/b', '2024-01-01', 2, raw_login='jdoe'),
            RawContributionRecord('a/b', '2024-01-01', 5, raw_login='bob'),
        ]
        snap = engine.ingest_records(records, IdentityResolver(), member_filter='JDoe')
        self.assertEqual(snap.identities(), ['jdoe'])


class TestEnrichment(unittest.TestCase):
    def test_enrichment_adds_task_and_file_counts(self):
        source = FakeSource(0, details={'alice': [detail('1', files_added=2), detail('2', files_modified=3), detail('1', files_added=2)]})
        engine = AggregationEngine(source)
        engine.ingest(alice_rows()[:1])
        steps = engine.enrich_all()
        self.assertIsNone(steps[0].error)
        totals = engine.snapshot().totals['alice']
        self.assertEqual(totals[Metric.TASKS], 2)
        self.assertEqual(totals[Metric.FILES_ADDED], 2)
        self.assertEqual(totals[Metric.FILES_MODIFIED], 3)
        self.assertEqual(source.detail_calls, [('a/b', 'alice', '2024-01-01')])
        self.assertEqual(len(engine.detail_records()), 3)

    def test_failing_unit_counts_as_zero_and_batch_finishes(self):
        source = FakeSource(0, details={'bob': [detail('9')]}, detail_errors={'alice'})
        engine = AggregationEngine(source)
        engine.ingest(alice_rows()[:1] + [ContributionRow('a/b', 'bob', 'bob', '2024-01-01', 1, 0, 0, login='bob')])
        steps = engine.enrich_all()
        self.assertIsNotNone(steps[0].error)
        self.assertIsNone(steps[1].error)
        snap = engine.snapshot()
        self.assertEqual(snap.totals['alice'][Metric.TASKS], 0)
        self.assertEqual(snap.totals['bob'][Metric.TASKS], 1)

    def test_unit_without_a_login_counts_as_zero_without_a_lookup(self):
        source = FakeSource(0)
        engine = AggregationEngine(source)
        engine.ingest([ContributionRow('a/b', 'janedoe', 'Jane Doe', '2024-01-01', 1, 0, 0)])
        steps = engine.enrich_all()
        self.assertIsNone(steps[0].error)
        self.assertEqual(source.detail_calls, [])
        self.assertEqual(engine.snapshot().totals['janedoe'][Metric.TASKS], 0)

    def test_detail_calls_go_through_the_throttle(self):
        calls = []

        class Recorder:
            def wait(self):
                calls.append('wait')

            def mark(self):
                calls.append('mark')

        source = FakeSource(0, detail_errors={'bob'})
        engine = AggregationEngine(source, throttle=Recorder())
        engine.ingest(alice_rows()[:1] + [ContributionRow('a/b', 'bob', 'bob', '2024-01-01', 1, 0, 0, login='bob')])
        engine.enrich_all()
        self.assertEqual(calls, ['wait', 'mark', 'wait', 'mark'])

    def test_enrich_unit_without_source_raises(self):
        engine = AggregationEngine()
        engine.ingest(alice_rows()[:1])
        with self.assertRaises(UpstreamRequestFailed) as ctx:
            engine.enrich_unit(engine.units()[0])
        self.assertEqual(ctx.exception.unit, 'a/b|alice|2024-01-01')

    def test_totals_equal_sum_of_series(self):
        source = FakeSource(0, details={'alice': [detail('1', files_deleted=1)]})
        engine = AggregationEngine(source)
        engine.ingest(alice_rows())
        engine.enrich_all()
        snap = engine.snapshot()
        for key in snap.identities():
            for metric in Metric:
                self.assertEqual(snap.totals[key][metric], total_from_series(snap, key, metric))


class TestReadHelpers(unittest.TestCase):
    def setUp(self):
        engine = AggregationEngine()
        engine.ingest([
            ContributionRow('a/b', 'carol', 'Carol', '2024-01-01', 1, 50, 0),
            ContributionRow('a/b', 'alice', 'Alice', '2024-01-01', 5, 1, 0),
            ContributionRow('a/b', 'bob', 'Bob', '2024-01-01', 5, 2, 0),
        ])
        self.snap = engine.snapshot()

    def test_top_n_ties_break_by_label(self):
        ranked = top_n(self.snap, 'contributions', 2)
        self.assertEqual([r['key'] for r in ranked], ['alice', 'bob'])
        self.assertEqual([r['key'] for r in top_n(self.snap, 'addedLines', 1)], ['carol'])

    def test_filter_visible_falls_back_to_everything(self):
        rows = top_n(self.snap, Metric.CONTRIBUTIONS, None)
        self.assertEqual([r['key'] for r in filter_visible(rows, {'bob'})], ['bob'])
        self.assertEqual(len(filter_visible(rows, {'nobody'})), 3)
        self.assertEqual(len(filter_visible(rows, set())), 3)

    def test_derive_detail_metrics_dedupes_ids(self):
        details = [DetailRecord('1', '#1', files_added=1), DetailRecord('1', '#1', files_added=1), DetailRecord('2', '#2')]
        derived = derive_detail_metrics(details)
        self.assertEqual(derived[Metric.TASKS], 2)
        self.assertEqual(derived[Metric.FILES_ADDED], 1)


if __name__ == '__main__':
    unittest.main()
