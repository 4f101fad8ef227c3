"""
Sweep-line computation of concurrent stream statistics.

Every session contributes a +1 event at its start and a -1 event at its stop.
Events are processed in time order with stops ahead of starts at the same
instant, so intervals are half-open: a stream ending at T and another starting
at T never overlap.
"""

from typing import Iterable

from watchstats.models import (
    DECISION_COPY,
    DECISION_TRANSCODE,
    ConcurrentEvent,
    ConcurrentPeaks,
    ConcurrentTimePoint,
    SessionInterval,
    normalize_decision,
)

HOUR_SECONDS = 3600


def build_events(intervals: Iterable[SessionInterval]) -> list[ConcurrentEvent]:
    """
    Turn session intervals into a sorted start/stop event stream.

    Intervals with a non-positive duration are dropped.
    """
    events = []
    for interval in intervals:
        if interval.started is None or interval.stopped is None:
            continue
        if interval.stopped <= interval.started:
            continue
        decision = normalize_decision(interval.transcode_decision)
        events.append(ConcurrentEvent(time=interval.started, delta=1, decision=decision))
        events.append(ConcurrentEvent(time=interval.stopped, delta=-1, decision=decision))

    events.sort(key=lambda ev: (ev.time, ev.delta))
    return events


def _sweep_events(events: Iterable[ConcurrentEvent]) -> tuple[list[ConcurrentTimePoint], ConcurrentPeaks]:
    peaks = ConcurrentPeaks()
    hourly_max: dict[int, ConcurrentTimePoint] = {}
    direct_play = direct_stream = transcode = 0

    for event in events:
        if event.decision == DECISION_TRANSCODE:
            transcode += event.delta
        elif event.decision == DECISION_COPY:
            direct_stream += event.delta
        else:
            direct_play += event.delta
        total = direct_play + direct_stream + transcode

        # Strict comparison keeps peak_at at the first instant the peak was reached
        if total > peaks.total:
            peaks.total = total
            peaks.peak_at = event.time
        if direct_play > peaks.direct_play:
            peaks.direct_play = direct_play
        if direct_stream > peaks.direct_stream:
            peaks.direct_stream = direct_stream
        if transcode > peaks.transcode:
            peaks.transcode = transcode

        bucket = event.time - (event.time % HOUR_SECONDS)
        existing = hourly_max.get(bucket)
        if existing is None or total > existing.total:
            hourly_max[bucket] = ConcurrentTimePoint(
                time=bucket,
                direct_play=direct_play,
                direct_stream=direct_stream,
                transcode=transcode,
                total=total,
            )

    series = [hourly_max[bucket] for bucket in sorted(hourly_max)]
    return series, peaks


def compute_peaks(events: Iterable[ConcurrentEvent]) -> ConcurrentPeaks:
    """
    Compute the overall peak and independent per-decision peaks.

    ``peak_at`` is the first instant the overall peak was reached. Each class
    keeps its own maximum, which need not coincide with the overall peak.
    """
    return _sweep_events(events)[1]


def bucket_hourly(events: Iterable[ConcurrentEvent]) -> list[ConcurrentTimePoint]:
    """
    Reduce the sweep to one snapshot per hour.

    For each hour only the snapshot with the highest overall total is kept, so
    output size depends on the time span, not on the number of sessions.
    """
    return _sweep_events(events)[0]


def sweep(intervals: Iterable[SessionInterval]) -> tuple[list[ConcurrentTimePoint], ConcurrentPeaks]:
    """
    Run the full sweep over a set of intervals in a single pass.

    Returns:
        Tuple of (hourly series sorted by time, peaks)
    """
    events = build_events(intervals)
    if not events:
        return [], ConcurrentPeaks()
    return _sweep_events(events)
