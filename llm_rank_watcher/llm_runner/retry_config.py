"""
Retry configuration for completion API calls.

Retry is a property of the concrete completion client, not of the run
orchestrator: the orchestrator makes exactly one completion call per prompt
and fails the run if that call fails. The OpenAI client retries transient
failures (429, 5xx, network errors) inside that single call.

Example:
    >>> @create_retry_decorator()
    ... async def call_api():
    ...     # Will retry on 429, 5xx with exponential backoff
    ...     pass
"""

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

# Total attempts = 1 initial + 2 retries
MAX_ATTEMPTS = 3

# Backoff bounds in seconds (2s, 4s, 8s, ... capped)
MIN_WAIT_SECONDS = 1
MAX_WAIT_SECONDS = 60

# Transient: rate limit and server errors
RETRY_STATUS_CODES = frozenset([429, 500, 502, 503, 504])

# Permanent: retrying will not fix these
NO_RETRY_STATUS_CODES = frozenset([400, 401, 403, 404])

# Per-attempt HTTP timeout. The orchestrator applies its own
# operation-level timeout on top of this.
REQUEST_TIMEOUT = 60.0


def create_retry_decorator(
    max_attempts: int = MAX_ATTEMPTS,
    min_wait: float = MIN_WAIT_SECONDS,
    max_wait: float = MAX_WAIT_SECONDS,
):
    """
    Create a tenacity retry decorator for completion API calls.

    Retries on httpx.HTTPStatusError, httpx.ConnectError and
    httpx.TimeoutException with exponential backoff. The caller must raise a
    different exception type for NO_RETRY_STATUS_CODES so permanent errors
    fail fast.

    Args:
        max_attempts: Total attempts including the first one
        min_wait: Lower bound of the backoff wait in seconds
        max_wait: Upper bound of the backoff wait in seconds

    Returns:
        Retry decorator that re-raises the last exception when exhausted
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(
            multiplier=1,
            min=min_wait,
            max=max_wait,
        ),
        retry=retry_if_exception_type(
            (
                httpx.HTTPStatusError,
                httpx.ConnectError,
                httpx.TimeoutException,
            )
        ),
        reraise=True,
    )
