"""
Retry backoff policy.

Turns a job's backoff options and its current attempt number into the delay
before the job becomes eligible again.
"""

from datetime import datetime

from pueue.constants import MAX_BACKOFF_DELAY_MS, BackoffType
from pueue.types.job import BackoffOptions
from pueue.utils import after_ms


def compute_backoff_delay(backoff: BackoffOptions, attempt: int) -> int:
    """
    Compute the retry delay in milliseconds.

    - fixed:       delay
    - linear:      delay * attempt
    - exponential: delay ** attempt

    A zero or negative base delay means the job is eligible immediately.

    Args:
        backoff: The job's backoff options.
        attempt: The attempt that just failed (before it is incremented).

    Returns:
        Non-negative delay in milliseconds.
    """
    if backoff.delay <= 0:
        return 0

    if backoff.type == BackoffType.LINEAR:
        return backoff.delay * attempt
    if backoff.type == BackoffType.EXPONENTIAL:
        return backoff.delay ** attempt
    return backoff.delay


def next_run_after(now: datetime, backoff: BackoffOptions, attempt: int) -> datetime:
    """
    Compute when a failed job becomes eligible again.

    The delay is capped at MAX_BACKOFF_DELAY_MS so large exponential
    values stay within the datetime range.
    """
    delay = min(compute_backoff_delay(backoff, attempt), MAX_BACKOFF_DELAY_MS)
    return after_ms(now, delay)
