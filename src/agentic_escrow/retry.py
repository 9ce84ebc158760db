"""Opt-in retry for callers.

The coordinator never retries. A caller that wants to, for idempotent reads
or after re-checking state, can wrap a coroutine function:

    get = retry_transient(max_attempts=5)(backend.transactions.get)
    txn = await get("txn_123")

Only errors flagged retryable (timeouts, network errors, rate limits) are
retried; a RateLimitError's retry_after hint sets the minimum wait.
"""

from __future__ import annotations

from typing import Any, Callable

from tenacity import RetryCallState, retry, retry_if_exception, stop_after_attempt, wait_exponential

from agentic_escrow.domain.exceptions import RateLimitError, is_retryable
from agentic_escrow.logging_config import get_logger

logger = get_logger(__name__)


class _WaitHonoringRetryAfter:
    """Exponential backoff, stretched to the server's Retry-After on 429."""

    def __init__(self, min_wait: float, max_wait: float) -> None:
        self._base = wait_exponential(multiplier=1, min=min_wait, max=max_wait)

    def __call__(self, state: RetryCallState) -> float:
        delay = self._base(state)
        exc = state.outcome.exception() if state.outcome else None
        if isinstance(exc, RateLimitError):
            delay = max(delay, float(exc.retry_after))
        return delay


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        "retry.scheduled",
        attempt=state.attempt_number,
        error=type(exc).__name__ if exc else None,
        sleep=state.next_action.sleep if state.next_action else None,
    )


def retry_transient(
    max_attempts: int = 3, min_wait: float = 1.0, max_wait: float = 30.0
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """tenacity decorator that retries only retryable EscrowErrors."""
    return retry(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(max_attempts),
        wait=_WaitHonoringRetryAfter(min_wait, max_wait),
        before_sleep=_log_retry,
        reraise=True,
    )
