import unittest
from unittest.mock import patch

from flask_app import create_app
from flask_app.models import AppSetting, ServerConfig, WatchSession, WatchSessionFragment, db

BASE = 1700000000


def _session(started, stopped, title='Movie', **kwargs):
    payload = {
        'server_id': 1,
        'user': 'alice',
        'title': title,
        'started': started,
        'stopped': stopped,
        'watched_ms': (stopped - started) * 1000,
    }
    payload.update(kwargs)
    return payload


class RouteTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app('testing')

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
        AppSetting.query.delete()
        db.session.commit()
        self.client = self.app.test_client()

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def test_insert_session_returns_id_then_zero(self):
        first = self.client.post('/api/sessions', json=_session(BASE, BASE + 600))
        second = self.client.post('/api/sessions', json=_session(BASE + 10, BASE + 600))

        self.assertEqual(first.status_code, 200)
        self.assertGreater(first.get_json()['id'], 0)
        self.assertTrue(first.get_json()['created'])
        self.assertEqual(second.get_json(), {'id': 0, 'created': False})

    def test_insert_session_accepts_iso_timestamps(self):
        response = self.client.post('/api/sessions', json=_session(BASE, BASE + 60) | {
            'started': '2023-11-14T22:13:20Z',
            'stopped': '2023-11-14T22:23:20Z',
        })

        self.assertEqual(response.status_code, 200)
        row = WatchSession.query.one()
        self.assertEqual(row.started, BASE)
        self.assertEqual(row.stopped, BASE + 600)

    def test_insert_session_rejects_non_object(self):
        response = self.client.post('/api/sessions', json=[1, 2])

        self.assertEqual(response.status_code, 400)

    def test_insert_session_rejects_bad_timestamp(self):
        response = self.client.post('/api/sessions', json=_session(BASE, BASE + 60) | {'started': 'yesterday'})

        self.assertEqual(response.status_code, 400)
        self.assertIn('error', response.get_json())

    def test_batch_insert_counts(self):
        response = self.client.post('/api/sessions/batch', json={'sessions': [
            _session(BASE, BASE + 600),
            _session(BASE + 900, BASE + 1500),
            _session(BASE + 5, BASE + 600),
            {'user': 'alice'},
        ]})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {'inserted': 1, 'skipped': 2, 'merged': 1})

    def test_batch_insert_skips_badly_typed_items(self):
        response = self.client.post('/api/sessions/batch', json=[
            _session(BASE, BASE + 600),
            _session(BASE, BASE + 600, title='Other'),
            _session(BASE, BASE + 600, title='Third') | {'started': [1]},
            _session(BASE, BASE + 600, title='Fourth') | {'watched_ms': 'lots'},
        ])

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {'inserted': 2, 'skipped': 2, 'merged': 0})
        self.assertEqual(sorted(s.title for s in WatchSession.query.all()), ['Movie', 'Other'])

    def test_insert_session_coerces_numeric_strings(self):
        response = self.client.post('/api/sessions', json=_session(BASE, BASE + 600) | {
            'server_id': '1', 'watched_ms': '5000', 'duration_ms': 6000.0,
        })

        self.assertEqual(response.status_code, 200)
        row = WatchSession.query.one()
        self.assertEqual(row.watched_ms, 5000)
        self.assertEqual(row.duration_ms, 6000)

    def test_batch_insert_requires_list(self):
        response = self.client.post('/api/sessions/batch', json={'sessions': 'nope'})

        self.assertEqual(response.status_code, 400)

    def test_concurrent_peaks(self):
        self.client.post('/api/sessions/batch', json=[
            _session(BASE, BASE + 600, transcode_decision='transcode'),
            _session(BASE + 100, BASE + 700, title='Other'),
        ])

        response = self.client.get('/api/concurrent-peaks')

        data = response.get_json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['total'], 2)
        self.assertEqual(data['transcode'], 1)
        self.assertEqual(data['direct_play'], 1)

    def test_concurrent_streams_validates_parameters(self):
        self.assertEqual(self.client.get('/api/concurrent-streams?days=0').status_code, 400)
        self.assertEqual(self.client.get('/api/concurrent-streams?start=10&end=5').status_code, 400)
        self.assertEqual(self.client.get('/api/concurrent-streams?server_id=x').status_code, 400)

    def test_concurrent_streams_explicit_range(self):
        self.client.post('/api/sessions', json=_session(BASE, BASE + 600))

        response = self.client.get(f'/api/concurrent-streams?start={BASE - 3600}&end={BASE + 3600}')

        data = response.get_json()
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(data['concurrent_streams_days'])
        self.assertEqual(data['peaks']['total'], 1)
        self.assertEqual(len(data['series']), 1)

    def test_consolidate_runs_once(self):
        db.session.add_all([
            WatchSession(server_id=1, user='alice', title='Movie', started=BASE, stopped=BASE + 600),
            WatchSession(server_id=1, user='alice', title='Movie', started=BASE + 900, stopped=BASE + 1500),
        ])
        db.session.commit()

        first = self.client.post('/api/sessions/consolidate', json={}).get_json()
        second = self.client.post('/api/sessions/consolidate', json={}).get_json()

        self.assertEqual(first['merged'], 1)
        self.assertFalse(first['already_done'])
        self.assertTrue(second['already_done'])
        self.assertEqual(WatchSession.query.count(), 1)

    def test_session_settings_update_and_validation(self):
        bad = self.client.post('/settings/sessions', json={'watched_threshold': 101})
        good = self.client.post('/settings/sessions', json={'watched_threshold': 90})

        self.assertEqual(bad.status_code, 400)
        self.assertEqual(good.status_code, 200)
        self.assertEqual(good.get_json()['watched_threshold'], 90)
        self.assertEqual(self.client.get('/settings/sessions').get_json()['watched_threshold'], 90)

        self.client.post('/settings/sessions', json={'watched_threshold': 85})

    def test_server_settings(self):
        missing_port = self.client.post('/settings/servers', json={
            'name': 'Main', 'ip_address': '10.0.0.5', 'api_key': 'abcdef123456'
        })
        plex_only = self.client.post('/settings/servers', json={'name': 'Plex only'})

        self.assertEqual(missing_port.status_code, 400)
        self.assertEqual(plex_only.status_code, 200)
        self.assertFalse(plex_only.get_json()['has_tautulli'])

        servers = self.client.get('/settings/servers').get_json()
        self.assertEqual([s['name'] for s in servers], ['Plex only'])
        self.assertNotIn('api_key', servers[0])

        deleted = self.client.delete(f"/settings/servers/{servers[0]['id']}")
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(ServerConfig.query.count(), 0)

    def test_list_group_sessions(self):
        self.client.post('/api/sessions/batch', json=[
            _session(BASE, BASE + 600),
            _session(BASE + 900, BASE + 1500),
            _session(BASE + 10_000, BASE + 10_600),
        ])

        response = self.client.get('/api/sessions?server_id=1&user=alice&title=Movie')

        sessions = response.get_json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual([s['session_count'] for s in sessions], [2, 1])
        self.assertEqual(sessions[0]['stopped'], BASE + 1500)
        self.assertEqual(self.client.get('/api/sessions?user=alice').status_code, 400)

    def test_server_connection_check(self):
        saved = self.client.post('/settings/servers', json={
            'name': 'Main', 'ip_address': '10.0.0.5:8181', 'api_key': 'abcdef123456'
        }).get_json()

        with patch('watchstats.api_client.requests.get') as mock_get:
            mock_get.return_value.json.return_value = {'response': {'result': 'success'}}
            response = self.client.post(f"/settings/servers/{saved['id']}/test")

        self.assertEqual(response.get_json(), {'connected': True})
        self.assertEqual(mock_get.call_args.kwargs['params']['cmd'], 'arnold')

    def test_history_sync_requires_server(self):
        response = self.client.post('/api/history/sync', json={'mode': 'backfill', 'days': 30})

        self.assertEqual(response.status_code, 400)

    def test_history_sync_status(self):
        response = self.client.get('/api/history/sync/status')

        data = response.get_json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['status'], 'idle')
        self.assertEqual(data['history']['total_sessions'], 0)


if __name__ == '__main__':
    unittest.main()
