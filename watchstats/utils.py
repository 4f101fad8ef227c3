"""
Utility functions for WatchStats.
"""

from typing import Any, Optional


def to_int(value: Any) -> Optional[int]:
    """Safely convert a value to int, returning None on failure."""
    if value in (None, ''):
        return None
    if isinstance(value, str):
        value = value.replace(',', '').strip()
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None


def to_str(value: Any) -> str:
    """Convert an API value to a stripped string, treating None as empty."""
    if value is None:
        return ''
    return str(value).strip()


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def mask_api_key(api_key: str) -> str:
    """
    Mask API key for safe display.

    Args:
        api_key: API key to mask

    Returns:
        Masked API key string
    """
    if len(api_key) > 8:
        return f"{api_key[:4]}...{api_key[-4:]}"
    return "***"
