import os
import tempfile
import unittest

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from flask_app import create_app
from flask_app.models import db


class SQLiteLockingTests(unittest.TestCase):
    def setUp(self):
        fd, self.db_path = tempfile.mkstemp(suffix='.db')
        os.close(fd)
        self.app = create_app('testing', {
            'SQLALCHEMY_DATABASE_URI': f'sqlite:///{self.db_path}',
            'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 0.1}},
        })
        self.ctx = self.app.app_context()
        self.ctx.push()

    def tearDown(self):
        db.session.remove()
        db.engine.dispose()
        self.ctx.pop()
        os.remove(self.db_path)

    def test_second_transaction_cannot_begin_while_first_is_open(self):
        first = db.engine.connect()
        second = db.engine.connect()
        try:
            first.begin()
            first.execute(text('SELECT COUNT(*) FROM watch_sessions'))

            with self.assertRaises(OperationalError):
                second.begin()
        finally:
            first.close()
            second.close()

    def test_transactions_proceed_after_commit(self):
        with db.engine.begin() as conn:
            conn.execute(text('SELECT COUNT(*) FROM watch_sessions'))

        with db.engine.begin() as conn:
            count = conn.execute(text('SELECT COUNT(*) FROM watch_sessions')).scalar()

        self.assertEqual(count, 0)


if __name__ == '__main__':
    unittest.main()
