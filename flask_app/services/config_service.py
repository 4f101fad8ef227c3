"""
Configuration service for managing database-driven configuration.
"""
from typing import List

from flask_app.models import db, AppSetting, ConsolidationSettings, ServerConfig
from watchstats.config_loader import ConfigLoader, SessionSettings


class ConfigService:
    """Service for managing configuration from database."""

    @staticmethod
    def get_session_settings() -> SessionSettings:
        """Get consolidation settings in watchstats format, seeding defaults if missing."""
        settings = ConsolidationSettings.query.first()
        if not settings:
            settings = ConfigService._seed_session_settings()
        return settings.to_session_settings()

    @staticmethod
    def _seed_session_settings() -> ConsolidationSettings:
        loader = ConfigLoader()
        loader.load_from_file()
        seeded = loader.get_settings()

        settings = ConsolidationSettings(
            dedup_window_seconds=seeded.dedup_window_seconds,
            consolidation_window_seconds=seeded.consolidation_window_seconds,
            watched_threshold=seeded.watched_threshold,
            concurrent_peak_days=seeded.concurrent_peak_days
        )
        db.session.add(settings)
        db.session.commit()
        return settings

    @staticmethod
    def update_session_settings(session_settings: SessionSettings):
        """
        Update consolidation settings from watchstats SessionSettings.

        Args:
            session_settings: watchstats.config_loader.SessionSettings object

        Raises:
            ValueError: If any value is out of range
        """
        session_settings.validate()

        settings = ConsolidationSettings.query.first()
        if not settings:
            settings = ConsolidationSettings()
            db.session.add(settings)

        settings.dedup_window_seconds = session_settings.dedup_window_seconds
        settings.consolidation_window_seconds = session_settings.consolidation_window_seconds
        settings.watched_threshold = session_settings.watched_threshold
        settings.concurrent_peak_days = session_settings.concurrent_peak_days

        db.session.commit()

    @staticmethod
    def get_setting(key: str) -> str:
        """Get a key/value setting, '' when unset."""
        setting = db.session.get(AppSetting, key)
        return setting.value if setting else ''

    @staticmethod
    def set_setting(key: str, value: str, commit: bool = True):
        """
        Upsert a key/value setting.

        Args:
            key: Setting key
            value: Setting value
            commit: Commit immediately; pass False to keep the write inside the caller's transaction
        """
        setting = db.session.get(AppSetting, key)
        if setting:
            setting.value = value
        else:
            db.session.add(AppSetting(key=key, value=value))

        if commit:
            db.session.commit()

    @staticmethod
    def has_valid_config() -> bool:
        """Check if at least one server is configured."""
        return ServerConfig.query.filter_by(is_active=True).count() > 0

    @staticmethod
    def get_active_servers() -> List[ServerConfig]:
        """Get all active servers ordered by id."""
        return ServerConfig.query.filter_by(is_active=True).order_by(ServerConfig.id).all()

    @staticmethod
    def create_or_update_server(name: str, tautulli_config=None) -> ServerConfig:
        """
        Create or update a server by name.

        Args:
            name: Server display name
            tautulli_config: Optional watchstats.models.ServerConfig for history import

        Returns:
            The saved ServerConfig row
        """
        server = ServerConfig.query.filter_by(name=name).first()

        if not server:
            server = ServerConfig(name=name)
            db.session.add(server)

        if tautulli_config is not None:
            server.ip_address = tautulli_config.ip_address
            server.api_key = tautulli_config.api_key
            server.use_ssl = getattr(tautulli_config, 'use_ssl', False)
            server.verify_ssl = getattr(tautulli_config, 'verify_ssl', False)

        db.session.commit()
        return server
