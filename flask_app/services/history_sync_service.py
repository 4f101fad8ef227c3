"""
Service for importing viewing history from Tautulli into watch_sessions.
Supports both a full backfill and incremental sync.

Every imported page goes through the consolidation batch insert, so reports
that duplicate or extend existing sessions are skipped or merged exactly as
live poller reports are.
"""
import logging
import threading
from datetime import datetime, timedelta, timezone

from flask_app.models import db, HistorySyncStatus, WatchSession
from flask_app.services.config_service import ConfigService
from flask_app.services.consolidation_service import ConsolidationService
from watchstats.api_client import TautulliClient
from watchstats.data_processing import process_tautulli_history
from watchstats.exceptions import BatchCancelledError
from watchstats.timezone_utils import get_local_timezone

logger = logging.getLogger(__name__)


class HistorySyncService:
    """Service for managing viewing history sync operations."""

    PAGE_SIZE = 1000  # Records per API request

    # Shared so a cancel request from one request thread reaches the running sync
    _cancel_event = threading.Event()

    def __init__(self):
        self.local_tz = get_local_timezone()

    def get_or_create_status(self) -> HistorySyncStatus:
        """Get or create the singleton sync status record."""
        status = HistorySyncStatus.query.first()
        if not status:
            status = HistorySyncStatus()
            db.session.add(status)
            db.session.commit()
        return status

    def get_sync_status(self) -> dict:
        """Get current sync status for polling."""
        status = self.get_or_create_status()
        last_sync_date = None
        if status.last_sync_date:
            last_sync_date = (
                status.last_sync_date.replace(tzinfo=timezone.utc)
                .astimezone(self.local_tz)
                .isoformat()
            )
        return {
            'status': status.status,
            'sync_type': status.sync_type,
            'records_fetched': status.records_fetched,
            'records_total': status.records_total,
            'records_inserted': status.records_inserted,
            'records_skipped': status.records_skipped,
            'records_merged': status.records_merged,
            'current_server': status.current_server,
            'error_message': status.error_message,
            'last_sync_date': last_sync_date,
            'last_sync_record_count': status.last_sync_record_count,
            'total_sessions_in_db': WatchSession.query.count()
        }

    def cancel(self):
        """Ask a running sync to stop; the page in flight is rolled back."""
        self._cancel_event.set()

    def _reset_status(self, status: HistorySyncStatus, sync_type: str):
        status.status = 'running'
        status.sync_type = sync_type
        status.started_at = datetime.utcnow()
        status.completed_at = None
        status.records_fetched = 0
        status.records_total = None
        status.records_inserted = 0
        status.records_skipped = 0
        status.records_merged = 0
        status.current_server = None
        status.error_message = None
        db.session.commit()

    def _finish(self, after_str: str):
        status = self.get_or_create_status()
        self._cancel_event.clear()

        try:
            self._run_sync(after_str)
            status.status = 'success'
            status.last_sync_date = datetime.utcnow()
            status.last_sync_record_count = WatchSession.query.count()
        except BatchCancelledError as e:
            logger.info("History sync cancelled: %s", e)
            status.status = 'cancelled'
            status.error_message = str(e)
        except Exception as e:
            logger.exception("History sync failed")
            db.session.rollback()
            status.status = 'failed'
            status.error_message = str(e)

        status.current_server = None
        status.completed_at = datetime.utcnow()
        db.session.commit()

    def start_backfill(self, days: int) -> bool:
        """
        Start a full backfill sync.

        Existing sessions are kept; imported history that overlaps them is
        deduplicated or merged by the consolidation rules.

        Args:
            days: Number of days of history to fetch

        Returns:
            True if backfill started, False if already running
        """
        status = self.get_or_create_status()

        if status.status == 'running':
            return False

        self._reset_status(status, 'backfill')

        after_date = datetime.now(self.local_tz) - timedelta(days=days)
        after_str = after_date.strftime("%Y-%m-%d")

        self._finish(after_str)
        return True

    def start_incremental_sync(self) -> bool:
        """
        Start an incremental sync (fetch only new records).

        Returns:
            True if sync started, False if already running or no existing data
        """
        status = self.get_or_create_status()

        if status.status == 'running':
            return False

        latest_session = WatchSession.query.order_by(WatchSession.started.desc()).first()
        if not latest_session:
            # Nothing stored yet, a backfill is needed first
            return False

        # Step back a day to cover timezone differences; re-imported rows are skipped
        latest_date = (
            datetime.fromtimestamp(latest_session.started, tz=timezone.utc)
            .astimezone(self.local_tz)
            - timedelta(days=1)
        )
        after_str = latest_date.strftime("%Y-%m-%d")

        self._reset_status(status, 'incremental')
        self._finish(after_str)
        return True

    def _run_sync(self, after_date: str):
        """
        Run the actual sync operation over every active server with Tautulli.

        Args:
            after_date: Date string in YYYY-MM-DD format
        """
        status = self.get_or_create_status()
        servers = [s for s in ConfigService.get_active_servers() if s.has_tautulli]

        if not servers:
            raise ValueError("No server with a Tautulli connection is configured")

        for server in servers:
            status.current_server = server.name
            db.session.commit()
            self._sync_server(server, after_date)

    def _sync_server(self, server, after_date: str):
        """
        Import history from a single server, one page per transaction.

        Args:
            server: flask_app.models.ServerConfig row
            after_date: Date string in YYYY-MM-DD format
        """
        status = self.get_or_create_status()
        client = TautulliClient(server.to_tautulli_config())
        consolidation = ConsolidationService()
        counted_total = False

        for records, total_records in client.iter_history_pages(page_size=self.PAGE_SIZE, after=after_date):
            if not counted_total:
                # Accumulate the estimate across servers
                status.records_total = (status.records_total or 0) + total_records
                db.session.commit()
                counted_total = True

            reports = process_tautulli_history(records, server.id)
            result = consolidation.insert_sessions_batch(reports, cancel_event=self._cancel_event)

            status.records_fetched += len(records)
            status.records_inserted += result.inserted
            status.records_skipped += result.skipped + (len(records) - len(reports))
            status.records_merged += result.merged
            db.session.commit()

        logger.info(
            "Imported history from %s: %d fetched, %d inserted, %d merged, %d skipped",
            server.name, status.records_fetched, status.records_inserted,
            status.records_merged, status.records_skipped
        )

    def get_history_stats(self) -> dict:
        """Get statistics about the stored sessions."""
        count = WatchSession.query.count()
        if count == 0:
            return {
                'total_sessions': 0,
                'oldest_date': None,
                'newest_date': None,
                'unique_users': 0
            }

        oldest = WatchSession.query.order_by(WatchSession.started.asc()).first()
        newest = WatchSession.query.order_by(WatchSession.started.desc()).first()
        unique_users = db.session.query(WatchSession.user).distinct().count()

        oldest_date = datetime.fromtimestamp(oldest.started, tz=timezone.utc).astimezone(self.local_tz).strftime('%Y-%m-%d')
        newest_date = datetime.fromtimestamp(newest.started, tz=timezone.utc).astimezone(self.local_tz).strftime('%Y-%m-%d')

        return {
            'total_sessions': count,
            'oldest_date': oldest_date,
            'newest_date': newest_date,
            'unique_users': unique_users
        }
