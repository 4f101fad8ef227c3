"""
Chart payloads (Highcharts format) for concurrent stream statistics.
"""

from typing import Optional
from zoneinfo import ZoneInfo

from watchstats.data_processing import aggregate_daily_max, process_concurrent_data
from watchstats.models import ConcurrentPeaks, ConcurrentTimePoint, StreamColors
from watchstats.timezone_utils import format_hour_label

# Above this many hourly points the chart switches to one point per day
MAX_HOURLY_POINTS = 24 * 14


def _area_fill(hex_color: str) -> dict:
    """Vertical gradient from the series color, fading towards the x axis."""
    value = hex_color.lstrip('#')
    rgb = ', '.join(str(int(value[i:i + 2], 16)) for i in (0, 2, 4))
    return {
        'linearGradient': {'x1': 0, 'y1': 0, 'x2': 0, 'y2': 1},
        'stops': [
            [0, f'rgba({rgb}, 0.3)'],
            [1, f'rgba({rgb}, 0.05)']
        ]
    }


def get_concurrent_streams_chart_data(
    points: list[ConcurrentTimePoint],
    peaks: ConcurrentPeaks,
    days: Optional[int],
    tz: ZoneInfo | None = None,
    colors: StreamColors | None = None
) -> dict:
    """
    Get data for the concurrent streams area chart in Highcharts format.

    The total is drawn as an area with one line per playback decision. Long
    ranges are reduced to the busiest hour of each day.

    Args:
        points: Hourly series from the sweep
        peaks: Peaks from the same sweep
        days: Number of days included in the data (None for a custom range)
        tz: Display timezone
        colors: Series colors

    Returns:
        Dictionary with 'categories', 'series', 'peaks', 'title'
    """
    colors = colors or StreamColors()
    color_map = colors.get_color_map()

    df = process_concurrent_data(points, tz)
    if len(df) > MAX_HOURLY_POINTS:
        df = aggregate_daily_max(df)
        categories = df['date'].tolist()
    elif not df.empty:
        categories = [format_hour_label(p.time, tz) for p in points]
    else:
        categories = []

    def column(name: str) -> list[int]:
        if df.empty:
            return []
        return [int(v) for v in df[name].tolist()]

    series = [
        {
            'name': 'Total',
            'type': 'area',
            'data': column('total'),
            'color': color_map['Total'],
            'fillColor': _area_fill(colors.total)
        },
        {
            'name': 'Direct Play',
            'type': 'line',
            'data': column('direct_play'),
            'color': color_map['Direct Play'],
            'lineWidth': 2,
            'marker': {'enabled': False}
        },
        {
            'name': 'Direct Stream',
            'type': 'line',
            'data': column('direct_stream'),
            'color': color_map['Direct Stream'],
            'lineWidth': 2,
            'marker': {'enabled': False}
        },
        {
            'name': 'Transcode',
            'type': 'line',
            'data': column('transcode'),
            'color': color_map['Transcode'],
            'lineWidth': 2,
            'marker': {'enabled': False}
        }
    ]

    title = 'Max Concurrent Streams'
    if days:
        title = f'{title} - {days} days'

    return {
        'categories': categories,
        'series': series,
        'peaks': peaks.to_dict(),
        'title': title
    }
