from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff settings handed to the underlying SDK.

    ``max_attempts`` counts retries after the first request, so a failing call
    is issued at most ``max_attempts + 1`` times.
    """

    base_delay: float = 5.0
    max_attempts: int = 4
