"""
Concurrent stream statistics computed from the canonical watch_sessions table.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from flask_app.models import WatchSession
from flask_app.services.config_service import ConfigService
from watchstats.concurrency import sweep
from watchstats.models import ConcurrentPeaks, ConcurrentTimePoint, SessionInterval, TimeFilter
from watchstats.timezone_utils import get_local_timezone, utc_now_ts
from watchstats.visualization import get_concurrent_streams_chart_data

logger = logging.getLogger(__name__)


class ConcurrencyService:
    """Peak and hourly concurrent stream counts over stored sessions."""

    @staticmethod
    def load_intervals(time_filter: Optional[TimeFilter] = None,
                       default_days: Optional[int] = None) -> List[SessionInterval]:
        """
        Load the session intervals that intersect the requested window.

        A session counts when it overlaps the window at all: it stopped after
        the window opened and started before the window closed.

        Args:
            time_filter: Optional window and server restriction
            default_days: Cutoff applied when the filter names no window

        Returns:
            List of SessionInterval
        """
        time_filter = time_filter or TimeFilter()
        range_start, range_end = time_filter.resolve(utc_now_ts(), default_days)

        query = WatchSession.query.with_entities(
            WatchSession.started, WatchSession.stopped, WatchSession.transcode_decision
        ).filter(WatchSession.stopped > WatchSession.started)

        if range_start is not None:
            query = query.filter(WatchSession.stopped > range_start)
        if range_end is not None:
            query = query.filter(WatchSession.started < range_end)
        if time_filter.server_ids:
            query = query.filter(WatchSession.server_id.in_(time_filter.server_ids))

        return [
            SessionInterval(started=started, stopped=stopped, transcode_decision=decision)
            for started, stopped, decision in query.all()
        ]

    @staticmethod
    def get_concurrent_streams(time_filter: Optional[TimeFilter] = None,
                               default_days: Optional[int] = None
                               ) -> Tuple[List[ConcurrentTimePoint], ConcurrentPeaks]:
        """
        Hourly series and peaks from a single sweep over the window.

        Returns:
            Tuple of (hourly series sorted by time, peaks)
        """
        intervals = ConcurrencyService.load_intervals(time_filter, default_days)
        series, peaks = sweep(intervals)
        logger.debug(
            "Concurrency sweep over %d sessions: %d hourly points, peak %d",
            len(intervals), len(series), peaks.total
        )
        return series, peaks

    @staticmethod
    def get_concurrent_peaks(time_filter: Optional[TimeFilter] = None) -> ConcurrentPeaks:
        """Peaks over the window; all time when no window is given."""
        return ConcurrencyService.get_concurrent_streams(time_filter)[1]

    @staticmethod
    def get_concurrent_streams_over_time(
        time_filter: Optional[TimeFilter] = None
    ) -> Tuple[List[ConcurrentTimePoint], ConcurrentPeaks]:
        """Hourly series for charting; defaults to the configured number of days."""
        settings = ConfigService.get_session_settings()
        return ConcurrencyService.get_concurrent_streams(time_filter, settings.concurrent_peak_days)

    @staticmethod
    def get_concurrent_streams_json(time_filter: Optional[TimeFilter] = None) -> Dict[str, Any]:
        """
        Generate the concurrent streams area chart JSON for Highcharts.

        Args:
            time_filter: Optional window; the configured day range is used when empty

        Returns:
            Dictionary with chart data, raw series and the day range used
        """
        time_filter = time_filter or TimeFilter()
        settings = ConfigService.get_session_settings()
        series, peaks = ConcurrencyService.get_concurrent_streams(
            time_filter, settings.concurrent_peak_days
        )

        has_range = time_filter.start is not None or time_filter.end is not None
        stream_days = None
        if not has_range:
            stream_days = time_filter.days if time_filter.days and time_filter.days > 0 \
                else settings.concurrent_peak_days

        chart_data = get_concurrent_streams_chart_data(
            series, peaks, stream_days, tz=get_local_timezone()
        )

        return {
            'chart_data': chart_data,
            'series': [point.to_dict() for point in series],
            'peaks': peaks.to_dict(),
            'concurrent_streams_days': stream_days
        }
