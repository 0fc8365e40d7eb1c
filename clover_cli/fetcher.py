"""
Bulk retrieval for Clover list endpoints.

Date-filtered queries are limited to a 90 day span per request, and list
endpoints return at most 1000 elements per page. ``BulkFetcher.fetch_all``
splits a range into windows, pages through each window in order and stops
once the requested number of records has been collected.
"""
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
MAX_WINDOW_MS = 90 * DAY_MS
PAGE_SIZE = 1000
DEFAULT_LIMIT_TOTAL = 10_000
PAGE_DELAY = 0.2
TIME_FIELD = 'createdTime'


def elements(response: Any) -> List[Dict[str, Any]]:
    """Unwrap a ``{"elements": [...]}`` list envelope."""
    if isinstance(response, dict):
        return response.get('elements') or []
    return []


def resource_path(resource: str) -> str:
    """'payments' -> '/v3/merchants/{mId}/payments'. Absolute paths pass through."""
    if resource.startswith('/'):
        return resource
    return '/v3/merchants/{mId}/' + resource.strip('/')


def split_windows(from_ms: int, to_ms: int, max_span_ms: int = MAX_WINDOW_MS) -> List[Tuple[int, int]]:
    """
    Split ``[from_ms, to_ms)`` into contiguous half-open windows.

    Each window is at most ``max_span_ms`` wide; together they cover the
    range exactly, earliest first. An empty range yields no windows.

    Raises:
        ValueError: If from_ms is after to_ms
    """
    if from_ms > to_ms:
        raise ValueError(f"Range start {from_ms} is after its end {to_ms}")
    if max_span_ms <= 0:
        raise ValueError("max_span_ms must be positive")

    windows = []
    start = from_ms
    while start < to_ms:
        end = min(start + max_span_ms, to_ms)
        windows.append((start, end))
        start = end
    return windows


class BulkFetcher:
    """
    Paginating, window-splitting reader on top of a transport.

    ``requester`` needs a ``request(method, path, params=...)`` method that
    returns the decoded body or raises; rate limits and token refresh are
    expected to be handled there.
    """

    def __init__(
        self,
        requester,
        page_size: int = PAGE_SIZE,
        max_window_ms: int = MAX_WINDOW_MS,
        page_delay: float = PAGE_DELAY,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.requester = requester
        self.page_size = page_size
        self.max_window_ms = max_window_ms
        self.page_delay = page_delay
        self.sleep = sleep or getattr(requester, 'sleep', None) or time.sleep

    def fetch_all(
        self,
        resource: str,
        from_ms: Optional[int] = None,
        to_ms: Optional[int] = None,
        limit_total: Optional[int] = None,
        filters: Optional[List[str]] = None,
        expand: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch records from a list endpoint.

        Args:
            resource: Resource name ('payments') or path with a {mId} placeholder
            from_ms: Inclusive lower bound on createdTime, epoch ms
            to_ms: Exclusive upper bound on createdTime, epoch ms
            limit_total: Maximum records returned (default 10000)
            filters: Extra ``filter`` expressions sent with every page
            expand: Value of the ``expand`` query parameter

        Returns:
            Records in window order, then page order, then server order

        Raises:
            CloverError: Any unrecovered transport error; nothing partial is returned
        """
        if limit_total is None:
            limit_total = DEFAULT_LIMIT_TOTAL
        if limit_total <= 0:
            return []

        path = resource_path(resource)
        if from_ms is not None and to_ms is not None:
            windows: List[Tuple[Optional[int], Optional[int]]] = list(
                split_windows(from_ms, to_ms, self.max_window_ms)
            )
            if len(windows) > 1:
                logger.warning(
                    "Date range spans %.0f days; fetching in %d windows of at most %d days",
                    (to_ms - from_ms) / DAY_MS,
                    len(windows),
                    self.max_window_ms // DAY_MS,
                )
        else:
            windows = [(from_ms, to_ms)]

        records: List[Dict[str, Any]] = []
        for start, end in windows:
            window_filters = list(filters or [])
            if start is not None:
                window_filters.append(f'{TIME_FIELD}>={start}')
            if end is not None:
                window_filters.append(f'{TIME_FIELD}<{end}')

            records.extend(self._fetch_window(path, window_filters, expand, limit_total - len(records)))
            if len(records) >= limit_total:
                break

        return records[:limit_total]

    def _fetch_window(
        self,
        path: str,
        filters: List[str],
        expand: Optional[str],
        remaining: int,
    ) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        offset = 0
        while True:
            if offset:
                self.sleep(self.page_delay)

            params: List[Tuple[str, Any]] = [('limit', self.page_size), ('offset', offset)]
            params.extend(('filter', f) for f in filters)
            if expand:
                params.append(('expand', expand))

            page = elements(self.requester.request('GET', path, params=params))
            logger.debug("GET %s offset=%d -> %d records", path, offset, len(page))
            records.extend(page)

            if len(records) >= remaining or len(page) < self.page_size:
                break
            offset += self.page_size

        return records[:remaining]
