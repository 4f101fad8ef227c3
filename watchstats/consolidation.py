"""
Dedup and consolidation rules for watch sessions.

These functions hold no state and never touch storage. They work on any object
exposing ``started``, ``stopped``, ``watched_ms``, ``paused_ms``,
``duration_ms`` and ``watched`` attributes, so the same rules apply to
``SessionReport`` instances and to persisted ``WatchSession`` rows.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

from watchstats.config_loader import SessionSettings
from watchstats.exceptions import InvalidSessionError
from watchstats.models import Disposition, SessionReport

# Fields copied onto a canonical row during a merge when the row has no value yet
ENRICHMENT_FIELDS = (
    'player',
    'platform',
    'ip_address',
    'video_resolution',
    'year',
    'season_number',
    'episode_number',
    'thumb',
    'rating_key',
    'tautulli_reference_id',
    'parent_title',
    'grandparent_title',
    'media_type',
)


@dataclass
class Classification:
    """Disposition of a report plus the existing session it relates to."""

    disposition: str
    target: Any = None
    reason: str = ''


def same_key(session: Any, report: SessionReport) -> bool:
    """True when a session belongs to the report's (server, user, title) group."""
    return (
        session.server_id == report.server_id
        and session.user == report.user
        and session.title == report.title
    )


def find_duplicate(report: SessionReport, existing: Iterable[Any], dedup_window: int) -> Optional[Any]:
    """Return an existing session whose start is within the dedup window, if any."""
    for session in existing:
        if abs(session.started - report.started) <= dedup_window:
            return session
    return None


def find_merge_target(
    report: SessionReport,
    existing: Iterable[Any],
    consolidation_window: int
) -> Optional[Any]:
    """
    Find the session a report should be folded into.

    Only sessions that started strictly before the report are eligible, and the
    report must start no later than ``consolidation_window`` seconds after the
    session's current stop. Overlapping intervals satisfy this trivially. When
    several sessions qualify, the most recently started one wins.
    """
    eligible = [
        s for s in existing
        if s.started < report.started and s.stopped >= report.started - consolidation_window
    ]
    if not eligible:
        return None
    return max(eligible, key=lambda s: (s.started, getattr(s, 'id', 0) or 0))


def classify_report(
    report: SessionReport,
    existing: Sequence[Any],
    settings: Optional[SessionSettings] = None
) -> Classification:
    """
    Decide whether a report is a duplicate, an extension, or a new session.

    Args:
        report: Incoming session report
        existing: Canonical sessions for the report's (server, user, title)
        settings: Window and threshold settings (defaults when omitted)

    Returns:
        Classification with SKIP, MERGE, CREATE or REJECT
    """
    settings = settings or SessionSettings()

    try:
        report.validate()
    except InvalidSessionError as e:
        return Classification(Disposition.REJECT, reason=str(e))

    candidates = [s for s in existing if same_key(s, report)]

    duplicate = find_duplicate(report, candidates, settings.dedup_window_seconds)
    if duplicate is not None:
        return Classification(
            Disposition.SKIP,
            target=duplicate,
            reason=f"start within {settings.dedup_window_seconds}s of an existing session",
        )

    target = find_merge_target(report, candidates, settings.consolidation_window_seconds)
    if target is not None:
        return Classification(
            Disposition.MERGE,
            target=target,
            reason=f"start within {settings.consolidation_window_seconds}s of predecessor stop",
        )

    return Classification(Disposition.CREATE)


def is_watched(watched_ms: int, duration_ms: int, threshold: int) -> bool:
    """Check whether playback reached the watched threshold (percent)."""
    if not duration_ms or duration_ms <= 0:
        return False
    return (watched_ms or 0) * 100 >= duration_ms * threshold


def merge_into(target: Any, source: Any, threshold: int) -> Any:
    """
    Fold ``source`` into ``target`` in place.

    The start is left alone, the stop is extended to the later of the two,
    watched and paused time are summed, and the watched flag is recomputed. A
    row already marked watched stays watched.

    All new values are computed before any attribute is assigned so the row is
    never left half-updated.
    """
    new_stopped = max(target.stopped, source.stopped)
    new_watched_ms = (target.watched_ms or 0) + max(source.watched_ms or 0, 0)
    new_paused_ms = (target.paused_ms or 0) + max(source.paused_ms or 0, 0)
    new_duration_ms = max(target.duration_ms or 0, source.duration_ms or 0)
    new_watched = bool(target.watched) or is_watched(new_watched_ms, new_duration_ms, threshold)
    new_count = (getattr(target, 'session_count', None) or 1) + (getattr(source, 'session_count', None) or 1)

    enrichment = {}
    for name in ENRICHMENT_FIELDS:
        if not getattr(target, name, None) and getattr(source, name, None):
            enrichment[name] = getattr(source, name)

    target.stopped = new_stopped
    target.watched_ms = new_watched_ms
    target.paused_ms = new_paused_ms
    target.duration_ms = new_duration_ms
    target.watched = new_watched
    if hasattr(target, 'session_count'):
        target.session_count = new_count
    for name, value in enrichment.items():
        setattr(target, name, value)

    return target


def plan_group_consolidation(rows: Sequence[Any], settings: Optional[SessionSettings] = None) -> dict:
    """
    Consolidate one (server, user, title) group of historical rows.

    Rows are walked in start order. A row whose start lies within the dedup
    window of the previous row is dropped without accumulating. Otherwise it is
    folded into the current anchor whenever the anchor's stop reaches to within
    the consolidation window of the row's start; if not, it becomes the new
    anchor.

    Anchors are mutated in place via ``merge_into``.

    Returns:
        Dict with 'absorbed' (list of (anchor, row) pairs) and 'duplicates'
        (list of (kept, row) pairs)
    """
    settings = settings or SessionSettings()
    ordered = sorted(rows, key=lambda r: (r.started, getattr(r, 'id', 0) or 0))

    absorbed = []
    duplicates = []
    anchor = None
    previous = None

    for row in ordered:
        if anchor is None:
            anchor = previous = row
            continue

        if abs(row.started - previous.started) <= settings.dedup_window_seconds:
            duplicates.append((anchor, row))
            continue

        if anchor.stopped >= row.started - settings.consolidation_window_seconds:
            merge_into(anchor, row, settings.watched_threshold)
            absorbed.append((anchor, row))
        else:
            anchor = row
        previous = row

    return {'absorbed': absorbed, 'duplicates': duplicates}
