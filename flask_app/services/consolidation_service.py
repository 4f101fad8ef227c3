"""
Service that admits session reports into the canonical watch_sessions table.

Each report is classified against the existing sessions for the same
(server, user, title) as a duplicate (skip), an extension of an earlier
session (merge), or a new session (create). The read/decide/write sequence
always runs inside a single transaction.
"""
import logging
import threading
from typing import Any, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from flask_app.models import db, WatchSession, WatchSessionFragment
from flask_app.services.config_service import ConfigService
from watchstats.config_loader import SessionSettings
from watchstats.consolidation import classify_report, is_watched, merge_into, plan_group_consolidation
from watchstats.exceptions import BatchCancelledError, InvalidSessionError, SessionStoreError
from watchstats.models import BackfillResult, BatchResult, Disposition, SessionReport

logger = logging.getLogger(__name__)

CONSOLIDATION_DONE_KEY = 'migration.session_consolidation_done'
ZOMBIE_CLEANUP_DONE_KEY = 'migration.zombie_cleanup_done'


class ConsolidationService:
    """Dedup and consolidation of watch session reports."""

    # Serializes writers in this process; with_for_update covers server databases
    # and SQLite transactions begin IMMEDIATE (see flask_app._use_immediate_transactions)
    _write_lock = threading.Lock()

    def __init__(self, settings: Optional[SessionSettings] = None):
        self.settings = settings or ConfigService.get_session_settings()

    def _load_candidates(self, report: SessionReport) -> list[WatchSession]:
        """
        Load the canonical sessions a report could match.

        Anything that stopped before the consolidation window, or that starts
        after the dedup window, can never be a duplicate or a merge target.
        """
        return (
            WatchSession.query
            .filter(
                WatchSession.server_id == report.server_id,
                WatchSession.user == report.user,
                WatchSession.title == report.title,
                WatchSession.stopped >= report.started - self.settings.consolidation_window_seconds,
                WatchSession.started <= report.started + self.settings.dedup_window_seconds,
            )
            .order_by(WatchSession.started, WatchSession.id)
            .with_for_update()
            .all()
        )

    def _add_fragment(self, session_id: int, source: Any):
        db.session.add(WatchSessionFragment(
            session_id=session_id,
            started=source.started,
            stopped=source.stopped,
            duration_ms=source.duration_ms or 0,
            watched_ms=source.watched_ms or 0,
            paused_ms=source.paused_ms or 0,
            player=source.player,
            platform=source.platform,
            ip_address=source.ip_address,
        ))

    def _create_session(self, report: SessionReport) -> WatchSession:
        session = WatchSession(
            server_id=report.server_id,
            user=report.user,
            title=report.title,
            parent_title=report.parent_title,
            grandparent_title=report.grandparent_title,
            media_type=report.media_type,
            year=report.year,
            season_number=report.season_number,
            episode_number=report.episode_number,
            rating_key=report.rating_key,
            thumb=report.thumb,
            started=report.started,
            stopped=report.stopped,
            duration_ms=max(report.duration_ms or 0, 0),
            watched_ms=max(report.watched_ms or 0, 0),
            paused_ms=max(report.paused_ms or 0, 0),
            watched=is_watched(report.watched_ms, report.duration_ms, self.settings.watched_threshold),
            session_count=1,
            transcode_decision=report.transcode_decision,
            player=report.player,
            platform=report.platform,
            ip_address=report.ip_address,
            video_resolution=report.video_resolution,
            tautulli_reference_id=report.tautulli_reference_id,
        )
        db.session.add(session)
        db.session.flush()
        return session

    def _apply(self, report: SessionReport) -> tuple[str, Optional[WatchSession]]:
        """Classify one report and write the outcome into the open transaction."""
        try:
            report.validate()
        except InvalidSessionError as e:
            logger.warning("Rejected session report: %s", e)
            return Disposition.REJECT, None

        existing = self._load_candidates(report)
        classification = classify_report(report, existing, self.settings)

        if classification.disposition == Disposition.SKIP:
            logger.debug(
                "Skipping duplicate of session %s for %s / %s (%s)",
                classification.target.id, report.user, report.title, classification.reason
            )
            return Disposition.SKIP, classification.target

        if classification.disposition == Disposition.MERGE:
            target = classification.target
            merge_into(target, report, self.settings.watched_threshold)
            self._add_fragment(target.id, report)
            logger.debug(
                "Merged report into session %s for %s / %s (%s)",
                target.id, report.user, report.title, classification.reason
            )
            return Disposition.MERGE, target

        session = self._create_session(report)
        self._add_fragment(session.id, report)
        logger.debug("Created session %s for %s / %s", session.id, report.user, report.title)
        return Disposition.CREATE, session

    def insert_session(self, report: SessionReport) -> int:
        """
        Admit a single report.

        Args:
            report: Session report to admit

        Returns:
            ID of the new session on create; 0 when the report was skipped,
            merged into an existing session, or rejected

        Raises:
            SessionStoreError: If the database write fails
        """
        with self._write_lock:
            try:
                disposition, session = self._apply(report)
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.exception("Inserting session report for %s / %s failed", report.user, report.title)
                raise SessionStoreError(f"Inserting session failed: {e}") from e

        if disposition == Disposition.CREATE:
            return session.id
        return 0

    def insert_sessions_batch(self, reports: Sequence[SessionReport], cancel_event=None) -> BatchResult:
        """
        Admit an ordered batch of reports as one transaction.

        Reports are processed in the order given. Each one sees the sessions
        created or extended by earlier reports in the same batch, so a later
        report can merge into a session created earlier in the batch, but never
        into one that a still-later report will create.

        Args:
            reports: Reports in caller order
            cancel_event: Optional object with ``is_set()`` (e.g. threading.Event),
                checked before each report

        Returns:
            BatchResult(inserted, skipped, merged); rejected reports count as skipped

        Raises:
            BatchCancelledError: If cancel_event was set; nothing is committed
            SessionStoreError: If the database write fails; nothing is committed
        """
        result = BatchResult()
        if not reports:
            return result

        with self._write_lock:
            try:
                for index, report in enumerate(reports):
                    if cancel_event is not None and cancel_event.is_set():
                        raise BatchCancelledError(
                            f"Batch insert cancelled after {index} of {len(reports)} reports",
                            processed=index
                        )

                    disposition, _ = self._apply(report)
                    if disposition == Disposition.CREATE:
                        result.inserted += 1
                    elif disposition == Disposition.MERGE:
                        result.merged += 1
                    else:
                        result.skipped += 1

                db.session.commit()
            except BatchCancelledError as e:
                db.session.rollback()
                logger.info("%s; rolled back", e)
                raise
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.exception("Batch insert of %d reports failed", len(reports))
                raise SessionStoreError(f"Batch insert failed: {e}") from e
            except Exception:
                db.session.rollback()
                raise

        logger.info(
            "Batch insert: %d inserted, %d skipped, %d merged",
            result.inserted, result.skipped, result.merged
        )
        return result

    def _ensure_fragments(self, rows: Sequence[WatchSession]):
        """Give rows written before fragments were tracked a fragment of their own."""
        ids = [row.id for row in rows]
        with_fragments = {
            session_id for (session_id,) in
            db.session.query(WatchSessionFragment.session_id)
            .filter(WatchSessionFragment.session_id.in_(ids))
            .distinct()
        }
        for row in rows:
            if row.id not in with_fragments:
                self._add_fragment(row.id, row)

    def run_backfill_consolidation(self, force: bool = False) -> BackfillResult:
        """
        Consolidate historical rows written before consolidation existed.

        Within each (server, user, title) group, rows are walked in start
        order: duplicates within the dedup window are dropped and each row is
        folded into its predecessor when the predecessor's stop is within the
        consolidation window of the row's start. Runs once, guarded by a
        completion flag; running it again is a no-op.

        Args:
            force: Run even if the completion flag is already set

        Returns:
            BackfillResult with group, merge and duplicate counts

        Raises:
            SessionStoreError: If the database write fails; nothing is committed
        """
        result = BackfillResult()

        with self._write_lock:
            if not force and ConfigService.get_setting(CONSOLIDATION_DONE_KEY) == '1':
                result.already_done = True
                return result

            try:
                groups = (
                    db.session.query(WatchSession.server_id, WatchSession.user, WatchSession.title)
                    .group_by(WatchSession.server_id, WatchSession.user, WatchSession.title)
                    .having(func.count(WatchSession.id) > 1)
                    .all()
                )

                for server_id, user, title in groups:
                    rows = (
                        WatchSession.query
                        .filter_by(server_id=server_id, user=user, title=title)
                        .order_by(WatchSession.started, WatchSession.id)
                        .all()
                    )
                    self._ensure_fragments(rows)
                    db.session.flush()

                    plan = plan_group_consolidation(rows, self.settings)
                    for anchor, row in plan['absorbed']:
                        WatchSessionFragment.query.filter_by(session_id=row.id).update(
                            {'session_id': anchor.id}, synchronize_session=False
                        )
                        db.session.delete(row)
                    for _, row in plan['duplicates']:
                        WatchSessionFragment.query.filter_by(session_id=row.id).delete(
                            synchronize_session=False
                        )
                        db.session.delete(row)

                    result.groups += 1
                    result.merged += len(plan['absorbed'])
                    result.duplicates_removed += len(plan['duplicates'])

                ConfigService.set_setting(CONSOLIDATION_DONE_KEY, '1', commit=False)
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.exception("Session backfill consolidation failed")
                raise SessionStoreError(f"Backfill consolidation failed: {e}") from e

        if result.merged or result.duplicates_removed:
            logger.info(
                "Backfill consolidation: %d groups, %d rows merged, %d duplicates removed",
                result.groups, result.merged, result.duplicates_removed
            )
        return result

    def cleanup_zombie_sessions(self) -> int:
        """
        Cap the stop time of sessions whose wall time vastly exceeds watched time.

        Rows that ran more than 5x their watched time plus an hour are cut to
        the watched time plus five minutes. Rows with no progress lingering for
        over an hour are cut to zero length. Runs once, guarded by a flag.

        Returns:
            Number of rows fixed
        """
        with self._write_lock:
            if ConfigService.get_setting(ZOMBIE_CLEANUP_DONE_KEY) == '1':
                return 0

            try:
                inflated = WatchSession.query.filter(
                    WatchSession.watched_ms > 0,
                    (WatchSession.stopped - WatchSession.started) * 1000
                    > WatchSession.watched_ms * 5 + 3600 * 1000
                ).all()
                for row in inflated:
                    row.stopped = row.started + (row.watched_ms + 300 * 1000) // 1000

                idle = WatchSession.query.filter(
                    WatchSession.watched_ms == 0,
                    WatchSession.stopped - WatchSession.started > 3600
                ).all()
                for row in idle:
                    row.stopped = row.started

                ConfigService.set_setting(ZOMBIE_CLEANUP_DONE_KEY, '1', commit=False)
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.exception("Zombie session cleanup failed")
                raise SessionStoreError(f"Zombie cleanup failed: {e}") from e

        fixed = len(inflated) + len(idle)
        if fixed:
            logger.info(
                "Zombie cleanup: fixed %d sessions with inflated wall times (%d zero-progress)",
                fixed, len(idle)
            )
        return fixed

    @staticmethod
    def get_group_sessions(server_id: int, user: str, title: str) -> list[WatchSession]:
        """All canonical sessions for one (server, user, title), oldest first."""
        return (
            WatchSession.query
            .filter_by(server_id=server_id, user=user, title=title)
            .order_by(WatchSession.started, WatchSession.id)
            .all()
        )
