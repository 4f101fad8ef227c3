"""
Tautulli API client for importing historical playback sessions.
"""

import logging
from typing import Any, Iterator, Optional

import requests
import urllib3

from watchstats.models import ServerConfig

# Suppress SSL warnings for self-signed certificates
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

logger = logging.getLogger(__name__)


class TautulliClient:
    """Client for interacting with Tautulli API."""

    REQUEST_TIMEOUT = 30

    def __init__(self, server_config: ServerConfig):
        """
        Initialize Tautulli client.

        Args:
            server_config: Server configuration containing API credentials
        """
        self.config = server_config
        self.base_url = server_config.base_url
        self.api_key = server_config.api_key
        self.verify_ssl = server_config.verify_ssl

    def _make_request(self, command: str, **params: Any) -> dict[str, Any]:
        """
        Make a request to the Tautulli API.

        Args:
            command: API command to execute
            **params: Additional parameters for the API call

        Returns:
            JSON response from the API

        Raises:
            requests.RequestException: If the request fails
        """
        query = {'apikey': self.api_key, 'cmd': command}
        query.update(params)

        response = requests.get(
            self.base_url,
            params=query,
            verify=self.verify_ssl,
            timeout=self.REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        return response.json()

    def test_connection(self) -> bool:
        """Check that the server answers and accepts the API key."""
        try:
            data = self._make_request('arnold')
        except requests.RequestException as e:
            logger.warning("Tautulli connection test failed for %s: %s", self.config.name, e)
            return False
        return data.get('response', {}).get('result') == 'success'

    def get_history_paginated(
        self,
        start: int = 0,
        length: int = 1000,
        after: Optional[str] = None
    ) -> dict[str, Any]:
        """
        Get play history with pagination support.

        Args:
            start: Row offset to start from (for pagination)
            length: Number of records to return per page (max 1000 recommended)
            after: Optional date string in YYYY-MM-DD format to filter records after this date

        Returns:
            API response containing:
            - response.data.data: List of history records
            - response.data.recordsTotal: Total records available
            - response.data.recordsFiltered: Records matching filter
        """
        params = {
            'start': start,
            'length': length,
            'order_column': 'started',
            'order_dir': 'asc',
        }
        if after:
            params['after'] = after
        return self._make_request('get_history', **params)

    def iter_history_pages(
        self,
        page_size: int = 1000,
        after: Optional[str] = None
    ) -> Iterator[tuple[list[dict[str, Any]], int]]:
        """
        Yield history one page at a time, oldest first.

        Yields:
            Tuple of (records, total records matching the filter)

        Raises:
            ValueError: If the server returns an unexpected payload
        """
        start = 0
        total_records = None

        while True:
            response = self.get_history_paginated(start=start, length=page_size, after=after)
            if not response or 'response' not in response:
                raise ValueError(f"Invalid API response from {self.config.name}")

            data = response['response'].get('data') or {}
            records = data.get('data', [])
            if total_records is None:
                total_records = data.get('recordsFiltered', 0)

            if not records:
                break

            yield records, total_records

            start += len(records)
            if start >= total_records:
                break
