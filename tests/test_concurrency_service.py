import unittest
from unittest.mock import patch

from flask import Flask

from flask_app.models import ConsolidationSettings, WatchSession, db
from flask_app.services.concurrency_service import ConcurrencyService
from watchstats.models import TimeFilter

DAY = 86400
NOW = 1700000000 - (1700000000 % 3600)


class ConcurrencyServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = Flask(__name__)
        cls.app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'
        cls.app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
        db.init_app(cls.app)
        with cls.app.app_context():
            db.create_all()

    @classmethod
    def tearDownClass(cls):
        with cls.app.app_context():
            db.drop_all()

    def setUp(self):
        self.ctx = self.app.app_context()
        self.ctx.push()
        WatchSession.query.delete()
        ConsolidationSettings.query.delete()
        db.session.add(ConsolidationSettings(
            dedup_window_seconds=60,
            consolidation_window_seconds=1800,
            watched_threshold=85,
            concurrent_peak_days=90
        ))
        db.session.commit()

        self.now_patch = patch('flask_app.services.concurrency_service.utc_now_ts', return_value=NOW)
        self.now_patch.start()

    def tearDown(self):
        self.now_patch.stop()
        db.session.remove()
        self.ctx.pop()

    def _add(self, started, stopped, decision='direct play', server_id=1, title='Movie'):
        db.session.add(WatchSession(
            server_id=server_id, user='alice', title=title,
            started=started, stopped=stopped, transcode_decision=decision
        ))
        db.session.commit()

    def test_explicit_range_includes_sessions_crossing_its_edges(self):
        self._add(NOW - 7200, NOW - 3000)   # crosses range start
        self._add(NOW - 2000, NOW - 1000)   # inside
        self._add(NOW - 600, NOW + 600)     # crosses range end
        self._add(NOW - 20_000, NOW - 10_000)  # before

        intervals = ConcurrencyService.load_intervals(TimeFilter(start=NOW - 3600, end=NOW))

        self.assertEqual(len(intervals), 3)

    def test_session_ending_at_range_start_is_excluded(self):
        self._add(NOW - 7200, NOW - 3600)

        intervals = ConcurrencyService.load_intervals(TimeFilter(start=NOW - 3600, end=NOW))

        self.assertEqual(intervals, [])

    def test_server_filter(self):
        self._add(NOW - 600, NOW - 300, server_id=1)
        self._add(NOW - 600, NOW - 300, server_id=2, title='Other')

        _, peaks = ConcurrencyService.get_concurrent_streams(TimeFilter(server_ids=[2]))

        self.assertEqual(peaks.total, 1)

    def test_days_cutoff(self):
        self._add(NOW - 2 * DAY, NOW - 2 * DAY + 600)
        self._add(NOW - 10 * DAY, NOW - 10 * DAY + 600)

        intervals = ConcurrencyService.load_intervals(TimeFilter(days=7))

        self.assertEqual(len(intervals), 1)

    def test_malformed_rows_are_excluded(self):
        self._add(NOW - 600, NOW - 900)
        self._add(NOW - 600, NOW - 600)

        series, peaks = ConcurrencyService.get_concurrent_streams()

        self.assertEqual(series, [])
        self.assertEqual(peaks.total, 0)

    def test_peaks_default_to_all_time(self):
        for _ in range(3):
            self._add(NOW - 200 * DAY, NOW - 200 * DAY + 600, decision='transcode')
        self._add(NOW - DAY, NOW - DAY + 600)

        peaks = ConcurrencyService.get_concurrent_peaks()

        self.assertEqual(peaks.total, 3)
        self.assertEqual(peaks.transcode, 3)

    def test_series_defaults_to_configured_days(self):
        for _ in range(3):
            self._add(NOW - 200 * DAY, NOW - 200 * DAY + 600, decision='transcode')
        self._add(NOW - DAY, NOW - DAY + 600, decision='copy')

        series, peaks = ConcurrencyService.get_concurrent_streams_over_time()

        self.assertEqual(len(series), 1)
        self.assertEqual(peaks.total, 1)
        self.assertEqual(peaks.direct_stream, 1)

    def test_streams_json_payload(self):
        self._add(NOW - DAY, NOW - DAY + 600)
        self._add(NOW - DAY + 100, NOW - DAY + 700, decision='transcode')

        result = ConcurrencyService.get_concurrent_streams_json(TimeFilter(days=30))

        self.assertEqual(result['concurrent_streams_days'], 30)
        self.assertEqual(result['peaks']['total'], 2)
        chart = result['chart_data']
        self.assertEqual([s['name'] for s in chart['series']],
                         ['Total', 'Direct Play', 'Direct Stream', 'Transcode'])
        self.assertEqual(chart['series'][0]['data'], [2])
        self.assertEqual(len(chart['categories']), 1)
        self.assertEqual(chart['title'], 'Max Concurrent Streams - 30 days')


if __name__ == '__main__':
    unittest.main()
