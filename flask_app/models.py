"""
Database models for Flask application.
"""
from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()


class ServerConfig(db.Model):
    """A media server whose sessions are tracked, with its optional Tautulli importer."""
    __tablename__ = 'server_configs'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    # Tautulli endpoint used for history import (host:port)
    ip_address = db.Column(db.String(255), nullable=True)
    api_key = db.Column(db.String(255), nullable=True)
    use_ssl = db.Column(db.Boolean, default=False)
    verify_ssl = db.Column(db.Boolean, default=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def has_tautulli(self) -> bool:
        return bool(self.ip_address and self.api_key)

    def to_tautulli_config(self):
        """Convert to watchstats.models.ServerConfig"""
        from watchstats.models import ServerConfig as TautulliServerConfig
        return TautulliServerConfig(
            name=self.name,
            ip_address=self.ip_address,
            api_key=self.api_key,
            use_ssl=self.use_ssl,
            verify_ssl=self.verify_ssl
        )


class ConsolidationSettings(db.Model):
    """Session consolidation settings (singleton table)."""
    __tablename__ = 'consolidation_settings'

    id = db.Column(db.Integer, primary_key=True)
    dedup_window_seconds = db.Column(db.Integer, default=60)
    consolidation_window_seconds = db.Column(db.Integer, default=1800)
    watched_threshold = db.Column(db.Integer, default=85)  # Percent of duration
    concurrent_peak_days = db.Column(db.Integer, default=90)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_session_settings(self):
        """Convert to watchstats.config_loader.SessionSettings"""
        from watchstats.config_loader import SessionSettings
        return SessionSettings(
            dedup_window_seconds=self.dedup_window_seconds,
            consolidation_window_seconds=self.consolidation_window_seconds,
            watched_threshold=self.watched_threshold,
            concurrent_peak_days=self.concurrent_peak_days
        )


class AppSetting(db.Model):
    """Key/value settings, used for one-time maintenance flags."""
    __tablename__ = 'app_settings'

    key = db.Column(db.String(100), primary_key=True)
    value = db.Column(db.String(500), nullable=False, default='')
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class WatchSession(db.Model):
    """Canonical watch session: one row per physical playback."""
    __tablename__ = 'watch_sessions'

    id = db.Column(db.Integer, primary_key=True)
    server_id = db.Column(db.Integer, nullable=False)
    user = db.Column(db.String(255), nullable=False)

    # Media info
    media_type = db.Column(db.String(50), nullable=True)  # movie, episode, track
    title = db.Column(db.String(500), nullable=False)  # Movie title or episode title
    parent_title = db.Column(db.String(500), nullable=True)  # Season for TV
    grandparent_title = db.Column(db.String(500), nullable=True)  # Show name for TV
    year = db.Column(db.Integer, nullable=True)
    season_number = db.Column(db.Integer, nullable=True)
    episode_number = db.Column(db.Integer, nullable=True)
    rating_key = db.Column(db.String(50), nullable=True)
    thumb = db.Column(db.String(500), nullable=True)

    # Playback info
    started = db.Column(db.Integer, nullable=False)  # Unix timestamp
    stopped = db.Column(db.Integer, nullable=False)  # Unix timestamp
    duration_ms = db.Column(db.Integer, default=0)  # Media length
    watched_ms = db.Column(db.Integer, default=0)  # Actual play time
    paused_ms = db.Column(db.Integer, default=0)
    watched = db.Column(db.Boolean, default=False)
    session_count = db.Column(db.Integer, default=1)  # Fragments folded into this row
    transcode_decision = db.Column(db.String(50), default='direct play')  # direct play, copy, transcode

    # Enrichment, filled in later
    player = db.Column(db.String(100), nullable=True)
    platform = db.Column(db.String(100), nullable=True)
    ip_address = db.Column(db.String(50), nullable=True)
    video_resolution = db.Column(db.String(50), nullable=True)
    tautulli_reference_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_watch_sessions_group', 'server_id', 'user', 'title', 'started'),
        db.Index('ix_watch_sessions_interval', 'started', 'stopped'),
    )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'server_id': self.server_id,
            'user': self.user,
            'media_type': self.media_type,
            'title': self.title,
            'parent_title': self.parent_title,
            'grandparent_title': self.grandparent_title,
            'started': self.started,
            'stopped': self.stopped,
            'duration_ms': self.duration_ms,
            'watched_ms': self.watched_ms,
            'paused_ms': self.paused_ms,
            'watched': bool(self.watched),
            'session_count': self.session_count,
            'transcode_decision': self.transcode_decision,
        }


class WatchSessionFragment(db.Model):
    """An individual report that was admitted into a canonical session."""
    __tablename__ = 'watch_session_fragments'

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(
        db.Integer,
        db.ForeignKey('watch_sessions.id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )
    started = db.Column(db.Integer, nullable=False)
    stopped = db.Column(db.Integer, nullable=False)
    duration_ms = db.Column(db.Integer, default=0)
    watched_ms = db.Column(db.Integer, default=0)
    paused_ms = db.Column(db.Integer, default=0)
    player = db.Column(db.String(100), nullable=True)
    platform = db.Column(db.String(100), nullable=True)
    ip_address = db.Column(db.String(50), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class HistorySyncStatus(db.Model):
    """Track Tautulli history import status for progress polling."""
    __tablename__ = 'history_sync_status'

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(20), default='idle')  # idle, running, success, failed, cancelled
    sync_type = db.Column(db.String(20), nullable=True)  # backfill, incremental
    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    # Progress tracking
    records_fetched = db.Column(db.Integer, default=0)
    records_total = db.Column(db.Integer, nullable=True)  # Estimated total
    current_server = db.Column(db.String(100), nullable=True)

    # Result info
    records_inserted = db.Column(db.Integer, default=0)
    records_skipped = db.Column(db.Integer, default=0)  # Duplicates and rejects
    records_merged = db.Column(db.Integer, default=0)
    error_message = db.Column(db.Text, nullable=True)

    # Last successful sync
    last_sync_date = db.Column(db.DateTime, nullable=True)
    last_sync_record_count = db.Column(db.Integer, nullable=True)
