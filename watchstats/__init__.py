"""
WatchStats Package

Consolidates playback reports from media-server pollers and Tautulli into
canonical watch sessions and computes concurrent stream statistics.
"""

from watchstats.api_client import TautulliClient
from watchstats.concurrency import build_events, compute_peaks, bucket_hourly, sweep
from watchstats.config_loader import ConfigLoader, SessionSettings, load_config
from watchstats.consolidation import classify_report, merge_into, plan_group_consolidation
from watchstats.exceptions import (
    BatchCancelledError,
    InvalidSessionError,
    SessionStoreError,
    WatchStatsError,
)
from watchstats.models import (
    BatchResult,
    ConcurrentPeaks,
    ConcurrentTimePoint,
    Disposition,
    ServerConfig,
    SessionInterval,
    SessionReport,
    TimeFilter,
)

__version__ = "0.1.0"
__all__ = [
    "TautulliClient",
    "ConfigLoader",
    "SessionSettings",
    "load_config",
    "build_events",
    "compute_peaks",
    "bucket_hourly",
    "sweep",
    "classify_report",
    "merge_into",
    "plan_group_consolidation",
    "BatchCancelledError",
    "InvalidSessionError",
    "SessionStoreError",
    "WatchStatsError",
    "BatchResult",
    "ConcurrentPeaks",
    "ConcurrentTimePoint",
    "Disposition",
    "ServerConfig",
    "SessionInterval",
    "SessionReport",
    "TimeFilter",
]
