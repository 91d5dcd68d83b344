"""Retry and polling utilities for storage backend calls.

Transient HTTP failures are retried with exponential back-off, and
asynchronous backend jobs are polled until they reach a terminal state.

Implementation: uses tenacity for both retries and polling.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

import tenacity
from tenacity.stop import stop_base
from tenacity.wait import wait_base

from output_mapping.lib.errors import StorageApiError

logger = logging.getLogger(__name__)

__all__ = ["RetryConfig", "PollConfig", "build_retrying", "poll_until"]

T = TypeVar("T")

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior of HTTP calls."""

    max_attempts: int = 5
    backoff_seconds: float = 0.5
    max_backoff_seconds: float = 30.0
    jitter: bool = True

    @classmethod
    def none(cls) -> "RetryConfig":
        """No retry - fail immediately."""
        return cls(max_attempts=1)


@dataclass(frozen=True)
class PollConfig:
    """Configuration for polling asynchronous backend jobs."""

    interval: float = 1.0
    max_interval: float = 20.0
    max_wait: Optional[float] = None


def is_retryable(exc: BaseException) -> bool:
    """Transient failures: rate limiting, server errors and transport errors."""
    if isinstance(exc, StorageApiError):
        return exc.code == 0 or exc.code in RETRYABLE_STATUS_CODES
    return False


def build_retrying(
    config: RetryConfig,
    should_retry: Callable[[BaseException], bool] = is_retryable,
    operation_name: str = "storage request",
) -> tenacity.Retrying:
    """Build a tenacity ``Retrying`` for one-off retries.

    Example:
        retrying = build_retrying(RetryConfig())
        response = retrying(lambda: client.get("/v2/storage/buckets"))
    """
    wait_strategy: wait_base = tenacity.wait_exponential(
        multiplier=config.backoff_seconds,
        min=config.backoff_seconds,
        max=config.max_backoff_seconds,
    )
    if config.jitter and config.backoff_seconds > 0:
        wait_strategy = wait_strategy + tenacity.wait_random(0, config.backoff_seconds * 0.5)

    def before_sleep_handler(retry_state: tenacity.RetryCallState) -> None:
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "%s attempt %d/%d failed: %s. Retrying in %.1fs...",
            operation_name,
            retry_state.attempt_number,
            config.max_attempts,
            exception,
            retry_state.next_action.sleep if retry_state.next_action else 0,
        )

    return tenacity.Retrying(
        stop=tenacity.stop_after_attempt(config.max_attempts),
        wait=wait_strategy,
        retry=tenacity.retry_if_exception(should_retry),
        before_sleep=before_sleep_handler,
        reraise=True,
    )


def poll_until(
    operation: Callable[[], T],
    is_done: Callable[[T], bool],
    config: PollConfig,
    description: str = "job",
) -> T:
    """Call ``operation`` until ``is_done`` accepts its result.

    The delay between polls grows exponentially up to ``config.max_interval``.
    No timeout is applied unless ``config.max_wait`` is set, in which case a
    ``StorageApiError`` is raised once it elapses.
    """
    stop: stop_base = tenacity.stop_never
    if config.max_wait is not None:
        stop = tenacity.stop_after_delay(config.max_wait)

    retrying = tenacity.Retrying(
        stop=stop,
        wait=tenacity.wait_exponential(
            multiplier=config.interval, min=config.interval, max=config.max_interval
        ),
        retry=tenacity.retry_if_result(lambda result: not is_done(result)),
        before_sleep=tenacity.before_sleep_log(logger, logging.DEBUG),
        reraise=True,
    )
    try:
        return retrying(operation)
    except tenacity.RetryError as exc:
        last: Any = exc.last_attempt.result() if exc.last_attempt else None
        raise StorageApiError(
            f"Timed out after {config.max_wait}s waiting for {description}",
            details={"last_state": last},
        ) from exc
