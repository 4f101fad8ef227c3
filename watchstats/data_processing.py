"""
Data processing functions for imported history and concurrency output.
"""

import logging
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo

import pandas as pd

from watchstats.models import ConcurrentTimePoint, SessionReport, normalize_decision
from watchstats.timezone_utils import get_local_timezone
from watchstats.utils import clamp, to_int, to_str

logger = logging.getLogger(__name__)

# Tautulli reports durations in seconds; anything past a day is bogus
MAX_DURATION_MS = 24 * 60 * 60 * 1000

CONCURRENT_COLUMNS = ['time', 'direct_play', 'direct_stream', 'transcode', 'total']


def convert_tautulli_record(record: dict[str, Any], server_id: int) -> Optional[SessionReport]:
    """
    Convert a single Tautulli history record into a session report.

    Args:
        record: Row from Tautulli's get_history response
        server_id: Media server the history belongs to

    Returns:
        SessionReport, or None if the record has no usable start time
    """
    started = to_int(record.get('started'))
    if not started:
        return None

    duration_s = to_int(record.get('duration')) or 0
    stopped = to_int(record.get('stopped')) or 0
    if stopped == 0:
        stopped = started + max(duration_s, 0)

    duration_ms = clamp(duration_s * 1000, 0, MAX_DURATION_MS)
    watched_ms = clamp((to_int(record.get('play_duration')) or 0) * 1000, 0, MAX_DURATION_MS)
    paused_ms = clamp((to_int(record.get('paused_counter')) or 0) * 1000, 0, MAX_DURATION_MS)

    rating_key = to_str(record.get('rating_key'))

    return SessionReport(
        server_id=server_id,
        user=to_str(record.get('user')),
        title=to_str(record.get('title')),
        started=started,
        stopped=stopped,
        media_type=to_str(record.get('media_type')),
        parent_title=to_str(record.get('parent_title')),
        grandparent_title=to_str(record.get('grandparent_title')),
        duration_ms=duration_ms,
        watched_ms=watched_ms,
        paused_ms=paused_ms,
        transcode_decision=normalize_decision(record.get('transcode_decision')),
        player=to_str(record.get('player')) or None,
        platform=to_str(record.get('platform')) or None,
        ip_address=to_str(record.get('ip_address')) or None,
        video_resolution=to_str(record.get('video_full_resolution')) or None,
        year=to_int(record.get('year')),
        season_number=to_int(record.get('parent_media_index')),
        episode_number=to_int(record.get('media_index')),
        thumb=to_str(record.get('thumb')) or None,
        rating_key=rating_key or None,
        tautulli_reference_id=to_int(record.get('reference_id')),
    )


def process_tautulli_history(records: Iterable[dict[str, Any]], server_id: int) -> list[SessionReport]:
    """
    Convert a page of Tautulli history into session reports, keeping API order.

    Records without a start time are dropped.
    """
    reports = []
    for record in records:
        report = convert_tautulli_record(record, server_id)
        if report is None:
            logger.debug("Dropping Tautulli record without start time: %s", record.get('row_id'))
            continue
        reports.append(report)
    return reports


def process_concurrent_data(
    points: list[ConcurrentTimePoint],
    tz: ZoneInfo | None = None
) -> pd.DataFrame:
    """
    Load hourly concurrency snapshots into a DataFrame.

    Args:
        points: Hourly series from the sweep (sorted by time)
        tz: Display timezone (defaults to TZ env)

    Returns:
        DataFrame with a tz-aware 'time' column plus per-class counts
    """
    if not points:
        return pd.DataFrame(columns=CONCURRENT_COLUMNS)

    df = pd.DataFrame(
        [[p.time, p.direct_play, p.direct_stream, p.transcode, p.total] for p in points],
        columns=CONCURRENT_COLUMNS
    )
    df['time'] = (
        pd.to_datetime(df['time'], unit='s')
        .dt.tz_localize('UTC')
        .dt.tz_convert(str(tz or get_local_timezone()))
    )
    return df


def aggregate_daily_max(df: pd.DataFrame) -> pd.DataFrame:
    """
    Collapse hourly snapshots to one row per local day.

    Each day keeps the hour with the highest total, so the class counts still
    describe a single real snapshot rather than independent maxima.
    """
    if df.empty:
        return pd.DataFrame(columns=['date'] + CONCURRENT_COLUMNS[1:])

    daily = df.copy()
    daily['date'] = daily['time'].dt.strftime('%Y-%m-%d')
    idx = daily.groupby('date')['total'].idxmax()
    daily = daily.loc[idx].sort_values('date')
    return daily[['date'] + CONCURRENT_COLUMNS[1:]].reset_index(drop=True)
