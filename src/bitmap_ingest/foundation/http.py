"""Shared HTTP utilities for session management.

This module provides the requests session used to talk to cluster nodes.
Import requests are POSTs whose retry policy is owned by the dispatcher
(it has to drop the failed node before trying again), so the transport-level
retry configured here only ever applies to idempotent GETs such as the
fragment-node lookup.
"""

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

# Default session configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_FACTOR = 0.5
DEFAULT_POOL_SIZE = 10
DEFAULT_STATUS_FORCELIST = [502, 503, 504]
DEFAULT_ALLOWED_METHODS = ["GET"]
USER_AGENT = "bitmap-ingest/0.1"


def create_retry_session(
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    pool_size: int = DEFAULT_POOL_SIZE,
    status_forcelist: list[int] | None = None,
    allowed_methods: list[str] | None = None,
) -> requests.Session:
    """Create a pooled requests session for cluster communication.

    Args:
        max_retries: Maximum number of transparent retries for allowed
            methods (default: 3).
        backoff_factor: Base backoff time in seconds (default: 0.5).
        pool_size: Connections kept per host; should be at least the import
            thread count so workers do not queue on the pool (default: 10).
        status_forcelist: HTTP status codes that trigger a transparent retry
            (default: [502, 503, 504]).
        allowed_methods: HTTP methods that may be retried transparently
            (default: ["GET"]). POST is deliberately absent.

    Returns:
        Configured requests.Session.

    Example:
        ```python
        from bitmap_ingest.foundation.http import create_retry_session

        session = create_retry_session(pool_size=8)
        response = session.get("http://localhost:10101/status", timeout=5)
        ```
    """
    if status_forcelist is None:
        status_forcelist = DEFAULT_STATUS_FORCELIST
    if allowed_methods is None:
        allowed_methods = DEFAULT_ALLOWED_METHODS

    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT
    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=status_forcelist,
        allowed_methods=allowed_methods,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy, pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session
