"""
Data models for watch sessions and concurrency statistics.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Optional

from watchstats.exceptions import InvalidSessionError
from watchstats.utils import mask_api_key, to_int

DECISION_DIRECT_PLAY = 'direct play'
DECISION_COPY = 'copy'
DECISION_TRANSCODE = 'transcode'

# Spellings seen from pollers and Tautulli for a repackaged (not re-encoded) stream
_COPY_ALIASES = {'copy', 'direct stream', 'direct_stream', 'directstream'}

_REQUIRED_INT_FIELDS = ('server_id', 'started', 'stopped', 'duration_ms', 'watched_ms', 'paused_ms')
_OPTIONAL_INT_FIELDS = ('year', 'season_number', 'episode_number', 'tautulli_reference_id')


def normalize_decision(value: Any) -> str:
    """Map a raw playback decision onto one of the three tracked classes.

    Anything that is not a copy or a transcode (including empty and legacy
    values) is treated as direct play.
    """
    if not value:
        return DECISION_DIRECT_PLAY
    text = str(value).strip().lower()
    if text == DECISION_TRANSCODE:
        return DECISION_TRANSCODE
    if text in _COPY_ALIASES:
        return DECISION_COPY
    return DECISION_DIRECT_PLAY


class Disposition:
    """Outcome of classifying a session report against the store."""

    SKIP = 'skip'
    MERGE = 'merge'
    CREATE = 'create'
    REJECT = 'reject'


@dataclass
class ServerConfig:
    """Configuration for a Tautulli instance that history is imported from."""

    name: str
    ip_address: str
    api_key: str
    use_ssl: bool = False
    verify_ssl: bool = False

    @property
    def base_url(self) -> str:
        """Get the base URL for API requests."""
        protocol = "https" if self.use_ssl else "http"
        return f"{protocol}://{self.ip_address}/api/v2"

    def __repr__(self) -> str:
        """String representation with masked API key."""
        masked_key = mask_api_key(self.api_key)
        return f"ServerConfig(name='{self.name}', ip_address='{self.ip_address}', api_key='{masked_key}')"


@dataclass
class SessionReport:
    """
    A single playback report as delivered by a poller or importer.

    Timestamps are Unix seconds (UTC). Durations are milliseconds.
    """

    server_id: int
    user: str
    title: str
    started: int
    stopped: int
    media_type: str = ''
    parent_title: str = ''
    grandparent_title: str = ''
    duration_ms: int = 0
    watched_ms: int = 0
    paused_ms: int = 0
    transcode_decision: str = DECISION_DIRECT_PLAY

    # Enrichment fields, filled in later when unknown at report time
    player: Optional[str] = None
    platform: Optional[str] = None
    ip_address: Optional[str] = None
    video_resolution: Optional[str] = None
    year: Optional[int] = None
    season_number: Optional[int] = None
    episode_number: Optional[int] = None
    thumb: Optional[str] = None
    rating_key: Optional[str] = None
    tautulli_reference_id: Optional[int] = None

    @property
    def key(self) -> tuple:
        """Grouping key used for matching against canonical sessions."""
        return (self.server_id, self.user, self.title)

    def validate(self) -> None:
        """
        Check that the report can be admitted.

        Raises:
            InvalidSessionError: If key fields are missing or stop is before start
        """
        if not self.server_id:
            raise InvalidSessionError("server_id is required")
        if not self.user:
            raise InvalidSessionError("user is required")
        if not self.title:
            raise InvalidSessionError("title is required")
        if self.started is None or self.stopped is None:
            raise InvalidSessionError("started and stopped are required")
        if self.stopped < self.started:
            raise InvalidSessionError(
                f"stopped ({self.stopped}) is before started ({self.started}) for '{self.title}'"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'SessionReport':
        """Build a report from a JSON payload, ignoring unknown keys.

        Raises:
            InvalidSessionError: If a numeric field cannot be read as an integer
        """
        known = cls.__dataclass_fields__.keys()
        values = {k: v for k, v in data.items() if k in known}
        for ts_key in ('started', 'stopped'):
            if isinstance(values.get(ts_key), str):
                values[ts_key] = _parse_timestamp(values[ts_key])
        for int_key in _REQUIRED_INT_FIELDS:
            if values.get(int_key) is None:
                values.pop(int_key, None)
                continue
            converted = to_int(values[int_key])
            if converted is None:
                raise InvalidSessionError(f"{int_key} must be an integer, got {values[int_key]!r}")
            values[int_key] = converted
        for int_key in _OPTIONAL_INT_FIELDS:
            if int_key in values:
                values[int_key] = to_int(values[int_key])
        values['transcode_decision'] = normalize_decision(values.get('transcode_decision'))
        try:
            return cls(**values)
        except TypeError as e:
            raise InvalidSessionError(f"Invalid session report: {e}") from e


def _parse_timestamp(value: str) -> int:
    """Accept either Unix seconds or an ISO-8601 string."""
    value = value.strip()
    if value.lstrip('-').isdigit():
        return int(value)
    try:
        dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError as e:
        raise InvalidSessionError(f"Invalid timestamp: {value}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


@dataclass
class SessionInterval:
    """The slice of a canonical session the concurrency sweep needs."""

    started: int
    stopped: int
    transcode_decision: str = DECISION_DIRECT_PLAY


@dataclass
class ConcurrentEvent:
    """A session start (+1) or stop (-1) at a point in time."""

    time: int
    delta: int
    decision: str


@dataclass
class ConcurrentPeaks:
    """Peak concurrent stream counts, overall and per playback decision."""

    total: int = 0
    direct_play: int = 0
    direct_stream: int = 0
    transcode: int = 0
    peak_at: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        peak_at_iso = None
        if self.peak_at is not None:
            peak_at_iso = datetime.fromtimestamp(self.peak_at, tz=timezone.utc).isoformat()
        return {
            'total': self.total,
            'direct_play': self.direct_play,
            'direct_stream': self.direct_stream,
            'transcode': self.transcode,
            'peak_at': peak_at_iso,
        }


@dataclass
class ConcurrentTimePoint:
    """Maximum concurrent snapshot observed within one hour bucket."""

    time: int
    direct_play: int = 0
    direct_stream: int = 0
    transcode: int = 0
    total: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data['time'] = datetime.fromtimestamp(self.time, tz=timezone.utc).isoformat()
        return data


@dataclass
class TimeFilter:
    """
    Time window for concurrency queries.

    Either a relative cutoff (``days``) or an explicit ``start``/``end`` range in
    Unix seconds. An explicit range wins when both are given.
    """

    days: Optional[int] = None
    start: Optional[int] = None
    end: Optional[int] = None
    server_ids: list[int] = field(default_factory=list)

    def resolve(self, now: int, default_days: Optional[int] = None) -> tuple[Optional[int], Optional[int]]:
        """
        Resolve to a concrete (range_start, range_end) pair.

        Args:
            now: Current time in Unix seconds
            default_days: Cutoff to apply when neither a range nor days is set

        Returns:
            Tuple of bounds; either side may be None for an open bound
        """
        if self.start is not None or self.end is not None:
            if self.start is not None and self.end is not None and self.end < self.start:
                raise ValueError("end must not be before start")
            return self.start, self.end

        days = self.days if self.days and self.days > 0 else default_days
        if days and days > 0:
            return now - days * 86400, None
        return None, None


@dataclass
class BatchResult:
    """Counts returned by a batch insert."""

    inserted: int = 0
    skipped: int = 0
    merged: int = 0

    def __iter__(self):
        return iter((self.inserted, self.skipped, self.merged))


@dataclass
class BackfillResult:
    """Counts returned by the historical consolidation pass."""

    groups: int = 0
    merged: int = 0
    duplicates_removed: int = 0
    already_done: bool = False


@dataclass
class StreamColors:
    """Color configuration for concurrent stream charts."""

    total: str = '#7afb4f'
    direct_play: str = '#E6B413'
    direct_stream: str = '#f18a3d'
    transcode: str = '#e36414'

    def get_color_map(self) -> dict[str, str]:
        """Get color mapping keyed by series name."""
        return {
            'Total': self.total,
            'Direct Play': self.direct_play,
            'Direct Stream': self.direct_stream,
            'Transcode': self.transcode,
        }
