import unittest
from unittest.mock import patch

from flask import Flask

from flask_app.models import (
    ConsolidationSettings,
    HistorySyncStatus,
    ServerConfig,
    WatchSession,
    WatchSessionFragment,
    db,
)
from flask_app.services.history_sync_service import HistorySyncService
from watchstats.api_client import TautulliClient
from watchstats.exceptions import BatchCancelledError


def _history_response(records, total):
    return {
        'response': {
            'data': {
                'data': records,
                'recordsFiltered': total,
            }
        }
    }


def _record(row_id, title, started, play_minutes=10, user='alice', **kwargs):
    record = {
        'row_id': row_id,
        'reference_id': row_id,
        'user': user,
        'title': title,
        'media_type': 'movie',
        'started': started,
        'stopped': started + play_minutes * 60,
        'duration': 7200,
        'play_duration': play_minutes * 60,
        'paused_counter': 0,
        'transcode_decision': 'direct play',
    }
    record.update(kwargs)
    return record


class _FakeClient:
    """Serves canned pages; pagination itself is the real client's."""

    iter_history_pages = TautulliClient.iter_history_pages

    def __init__(self, name, responses):
        self.config = type('Config', (), {'name': name})()
        self._responses = responses
        self._idx = 0

    def get_history_paginated(self, start=0, length=1000, after=None):
        if self._idx >= len(self._responses):
            return _history_response([], 0)
        response = self._responses[self._idx]
        self._idx += 1
        return response


class HistorySyncServiceTests(unittest.TestCase):
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
        WatchSessionFragment.query.delete()
        WatchSession.query.delete()
        ServerConfig.query.delete()
        HistorySyncStatus.query.delete()
        ConsolidationSettings.query.delete()
        db.session.add(ConsolidationSettings(
            dedup_window_seconds=60,
            consolidation_window_seconds=1800,
            watched_threshold=85,
            concurrent_peak_days=90
        ))
        db.session.commit()

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def _add_server(self, name: str):
        db.session.add(ServerConfig(
            name=name,
            ip_address='127.0.0.1:8181',
            api_key='key',
            is_active=True,
        ))
        db.session.commit()

    def _run_backfill(self, client_map):
        with patch('flask_app.services.history_sync_service.TautulliClient',
                   side_effect=lambda config: client_map[config.name]):
            return HistorySyncService().start_backfill(30)

    def test_backfill_aggregates_totals_from_both_servers(self):
        self._add_server('Server A')
        self._add_server('Server B')

        records_a = [
            _record(1, 'A1', 1700000000),
            _record(2, 'A2', 1700000100),
        ]
        records_b = [
            _record(3, 'B1', 1700000200),
            _record(4, 'B2', 1700000300),
        ]

        started = self._run_backfill({
            'Server A': _FakeClient('Server A', [_history_response(records_a, 2)]),
            'Server B': _FakeClient('Server B', [_history_response(records_b, 2)]),
        })

        self.assertTrue(started)
        status = HistorySyncService().get_or_create_status()
        self.assertEqual(status.status, 'success')
        self.assertEqual(status.sync_type, 'backfill')
        self.assertEqual(status.records_total, 4)
        self.assertEqual(status.records_fetched, 4)
        self.assertEqual(status.records_inserted, 4)
        self.assertEqual(status.records_skipped, 0)
        self.assertEqual(WatchSession.query.count(), 4)

    def test_fragmented_history_is_merged_across_pages(self):
        self._add_server('Server A')

        page_1 = [_record(1, 'Movie', 1700000000, play_minutes=20)]
        page_2 = [_record(2, 'Movie', 1700000000 + 25 * 60, play_minutes=30)]

        self._run_backfill({
            'Server A': _FakeClient('Server A', [
                _history_response(page_1, 2),
                _history_response(page_2, 2),
            ]),
        })

        status = HistorySyncService().get_or_create_status()
        self.assertEqual(status.records_fetched, 2)
        self.assertEqual(status.records_inserted, 1)
        self.assertEqual(status.records_merged, 1)
        session = WatchSession.query.one()
        self.assertEqual(session.watched_ms, 50 * 60 * 1000)
        self.assertEqual(session.session_count, 2)

    def test_reimported_history_is_skipped(self):
        self._add_server('Server A')
        records = [_record(1, 'Movie', 1700000000)]

        self._run_backfill({'Server A': _FakeClient('Server A', [_history_response(records, 1)])})
        self._run_backfill({'Server A': _FakeClient('Server A', [_history_response(records, 1)])})

        status = HistorySyncService().get_or_create_status()
        self.assertEqual(status.records_inserted, 0)
        self.assertEqual(status.records_skipped, 1)
        self.assertEqual(WatchSession.query.count(), 1)

    def test_records_without_start_are_counted_as_skipped(self):
        self._add_server('Server A')
        records = [_record(1, 'Movie', 1700000000), {'row_id': 2, 'user': 'alice', 'title': 'Broken'}]

        self._run_backfill({'Server A': _FakeClient('Server A', [_history_response(records, 2)])})

        status = HistorySyncService().get_or_create_status()
        self.assertEqual(status.records_inserted, 1)
        self.assertEqual(status.records_skipped, 1)

    def test_cancelled_sync_reports_cancelled(self):
        self._add_server('Server A')
        records = [_record(1, 'Movie', 1700000000)]

        with patch('flask_app.services.history_sync_service.ConsolidationService.insert_sessions_batch',
                   side_effect=BatchCancelledError('Batch insert cancelled after 0 of 1 reports')):
            self._run_backfill({'Server A': _FakeClient('Server A', [_history_response(records, 1)])})

        status = HistorySyncService().get_or_create_status()
        self.assertEqual(status.status, 'cancelled')
        self.assertEqual(WatchSession.query.count(), 0)

    def test_sync_fails_without_tautulli_server(self):
        db.session.add(ServerConfig(name='Plex only', is_active=True))
        db.session.commit()

        started = HistorySyncService().start_backfill(30)

        self.assertTrue(started)
        status = HistorySyncService().get_or_create_status()
        self.assertEqual(status.status, 'failed')
        self.assertIn('Tautulli', status.error_message)

    def test_running_sync_is_not_restarted(self):
        self._add_server('Server A')
        status = HistorySyncService().get_or_create_status()
        status.status = 'running'
        db.session.commit()

        self.assertFalse(HistorySyncService().start_backfill(30))

    def test_incremental_requires_existing_sessions(self):
        self._add_server('Server A')

        self.assertFalse(HistorySyncService().start_incremental_sync())


if __name__ == '__main__':
    unittest.main()
