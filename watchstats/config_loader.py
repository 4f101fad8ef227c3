"""
Configuration loader for WatchStats.

Supports loading configuration from:
1. config.ini file (recommended)
2. Environment variables (for automation/Docker)
"""

import configparser
import os
from dataclasses import dataclass
from typing import Optional

from watchstats.models import ServerConfig

DEFAULT_DEDUP_WINDOW_SECONDS = 60
DEFAULT_CONSOLIDATION_WINDOW_SECONDS = 30 * 60
DEFAULT_WATCHED_THRESHOLD = 85
DEFAULT_CONCURRENT_PEAK_DAYS = 90


@dataclass
class SessionSettings:
    """Settings for session consolidation and concurrency queries."""

    # Reports whose start is this close to an existing session are duplicates
    dedup_window_seconds: int = DEFAULT_DEDUP_WINDOW_SECONDS
    # Max gap between a session's stop and the next report's start to merge them
    consolidation_window_seconds: int = DEFAULT_CONSOLIDATION_WINDOW_SECONDS
    # Percent of the media duration that counts as watched
    watched_threshold: int = DEFAULT_WATCHED_THRESHOLD
    # Default range for the concurrent streams chart
    concurrent_peak_days: int = DEFAULT_CONCURRENT_PEAK_DAYS

    def validate(self) -> None:
        """
        Raises:
            ValueError: If any value is out of range
        """
        if self.dedup_window_seconds < 0:
            raise ValueError("dedup_window_seconds must not be negative")
        if self.consolidation_window_seconds < self.dedup_window_seconds:
            raise ValueError("consolidation_window_seconds must be at least dedup_window_seconds")
        if not 1 <= self.watched_threshold <= 100:
            raise ValueError(
                f"watched threshold must be between 1 and 100, got {self.watched_threshold}"
            )
        if self.concurrent_peak_days < 1:
            raise ValueError("concurrent_peak_days must be at least 1")


def _env_flag(name: str) -> bool:
    return os.getenv(name, '').strip().lower() in ('1', 'true', 'yes', 'on')


class ConfigLoader:
    """Load configuration from various sources."""

    def __init__(self, config_file: str = "config.ini"):
        """
        Initialize config loader.

        Args:
            config_file: Path to config file (default: config.ini)
        """
        self.config_file = config_file
        self.config = None

    def load_from_file(self) -> bool:
        """
        Load configuration from INI file.

        Returns:
            True if file was loaded successfully, False otherwise
        """
        if not os.path.exists(self.config_file):
            return False

        self.config = configparser.ConfigParser()
        self.config.read(self.config_file)
        return True

    def get_tautulli_config(self) -> Optional[ServerConfig]:
        """
        Get the Tautulli importer configuration.

        Returns:
            ServerConfig, or None when no importer is configured

        Raises:
            ValueError: If the configured API key is still a placeholder
        """
        if self.config and self.config.has_section('Tautulli'):
            name = self.config.get('Tautulli', 'name', fallback='Tautulli')
            ip_address = self.config.get('Tautulli', 'ip_address', fallback='')
            api_key = self.config.get('Tautulli', 'api_key', fallback='')
            if not ip_address or not api_key:
                return None
            if 'YOUR_API_KEY' in api_key:
                raise ValueError(
                    "Please update config.ini with your actual Tautulli API key!\n"
                    "Replace 'YOUR_API_KEY_HERE' with your Tautulli API key."
                )
            return ServerConfig(
                name=name,
                ip_address=ip_address,
                api_key=api_key,
                use_ssl=self.config.getboolean('Tautulli', 'use_ssl', fallback=False),
                verify_ssl=self.config.getboolean('Tautulli', 'verify_ssl', fallback=False),
            )

        env_ip = os.getenv('TAUTULLI_IP')
        env_key = os.getenv('TAUTULLI_API_KEY')
        if env_ip and env_key:
            return ServerConfig(
                name=os.getenv('TAUTULLI_NAME', 'Tautulli'),
                ip_address=env_ip,
                api_key=env_key,
                use_ssl=_env_flag('TAUTULLI_SSL'),
                verify_ssl=_env_flag('TAUTULLI_VERIFY_SSL'),
            )

        return None

    def get_settings(self) -> SessionSettings:
        """
        Get session settings.

        Returns:
            SessionSettings with configured values

        Raises:
            ValueError: If a configured value is out of range
        """
        settings = SessionSettings()

        # Try config file first
        if self.config and self.config.has_section('Sessions'):
            settings.dedup_window_seconds = self.config.getint(
                'Sessions', 'dedup_window_seconds', fallback=DEFAULT_DEDUP_WINDOW_SECONDS)
            settings.consolidation_window_seconds = self.config.getint(
                'Sessions', 'consolidation_window_seconds', fallback=DEFAULT_CONSOLIDATION_WINDOW_SECONDS)
            settings.watched_threshold = self.config.getint(
                'Sessions', 'watched_threshold', fallback=DEFAULT_WATCHED_THRESHOLD)
            settings.concurrent_peak_days = self.config.getint(
                'Sessions', 'concurrent_peak_days', fallback=DEFAULT_CONCURRENT_PEAK_DAYS)
            settings.validate()
            return settings

        # Try environment variables
        settings.dedup_window_seconds = int(
            os.getenv('WATCHSTATS_DEDUP_WINDOW', str(DEFAULT_DEDUP_WINDOW_SECONDS)))
        settings.consolidation_window_seconds = int(
            os.getenv('WATCHSTATS_CONSOLIDATION_WINDOW', str(DEFAULT_CONSOLIDATION_WINDOW_SECONDS)))
        settings.watched_threshold = int(
            os.getenv('WATCHSTATS_WATCHED_THRESHOLD', str(DEFAULT_WATCHED_THRESHOLD)))
        settings.concurrent_peak_days = int(
            os.getenv('WATCHSTATS_CONCURRENT_PEAK_DAYS', str(DEFAULT_CONCURRENT_PEAK_DAYS)))
        settings.validate()

        return settings


def load_config(config_file: str = "config.ini") -> tuple[Optional[ServerConfig], SessionSettings]:
    """
    Convenience function to load all configuration.

    Args:
        config_file: Path to config file

    Returns:
        Tuple of (tautulli_config, settings)

    Raises:
        ValueError: If configuration is invalid
    """
    loader = ConfigLoader(config_file)
    loader.load_from_file()

    return loader.get_tautulli_config(), loader.get_settings()
