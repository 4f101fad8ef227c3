"""
Request validation utilities.
"""
from typing import List, Dict, Any


def validate_server_config(data: Dict[str, Any]) -> List[str]:
    """
    Validate server configuration data.

    The Tautulli connection is optional, but when either field is given both
    must be present.

    Args:
        data: Dictionary with 'name' and optional 'ip_address', 'api_key'

    Returns:
        List of error messages (empty if valid)
    """
    errors = []

    # Validate name
    if not data.get('name') or not str(data['name']).strip():
        errors.append('Server name is required.')

    ip_address = str(data.get('ip_address') or '').strip()
    api_key = str(data.get('api_key') or '').strip()
    if not ip_address and not api_key:
        return errors

    # Validate IP address
    if not ip_address:
        errors.append('IP address is required when an API key is set.')
    elif ':' not in ip_address:
        errors.append('IP address must include port (e.g., 192.168.1.100:8181).')

    # Validate API key
    if not api_key:
        errors.append('API key is required when an IP address is set.')
    elif api_key.upper() == 'YOUR_API_KEY':
        errors.append('Please replace "YOUR_API_KEY" with your actual Tautulli API key.')

    return errors


def validate_session_settings(data: Dict[str, Any]) -> List[str]:
    """
    Validate consolidation settings submitted as JSON.

    Args:
        data: Dictionary with any of 'dedup_window_seconds',
            'consolidation_window_seconds', 'watched_threshold',
            'concurrent_peak_days'

    Returns:
        List of error messages (empty if valid)
    """
    errors = []

    for key in ('dedup_window_seconds', 'consolidation_window_seconds',
                'watched_threshold', 'concurrent_peak_days'):
        if key not in data:
            continue
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f'{key} must be an integer.')

    return errors
