"""
Retry Logic — resilience against transient provider failures.

API calls fail. Networks drop. Rate limits hit. This module retries the
failures that are worth retrying, with exponential backoff, and lets every
other error surface immediately:

- Retryable: network/connection errors, timeouts, HTTP 429, any HTTP 5xx
- Not retryable: every other HTTP status (400, 401, 403, 404, ...) and
  anything that is not a transport problem

Both provider SDKs are created with their own retries disabled, so this is
the only retry policy in the process.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Callable, Optional, TypeVar

import anthropic
import httpx
import openai
import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_STATUS_ERRORS = (anthropic.APIStatusError, openai.APIStatusError)
_CONNECTION_ERRORS = (anthropic.APIConnectionError, openai.APIConnectionError)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_retries: int = 2,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter_range: float = 0.0,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter_range = jitter_range


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code <= 599


def is_retryable_error(error: Exception) -> bool:
    """Determine if an error is transient and worth retrying."""
    if isinstance(error, _STATUS_ERRORS):
        return is_retryable_status(error.status_code)
    # APITimeoutError subclasses APIConnectionError in both SDKs.
    if isinstance(error, _CONNECTION_ERRORS):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return is_retryable_status(error.response.status_code)
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    # OSError covers network-level issues
    if isinstance(error, OSError):
        return True
    return False


def _retry_after(error: Exception) -> Optional[float]:
    """Seconds from a Retry-After header, when the provider sent one."""
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    try:
        value = float(headers.get("retry-after", 0))
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def compute_delay(
    attempt: int,
    config: RetryConfig,
    retry_after: Optional[float] = None,
) -> float:
    """
    Compute the delay before the next retry attempt.

        delay = min(max_delay, base_delay * (exponential_base ^ attempt))
        delay += random jitter in [-jitter_range * delay, +jitter_range * delay]

    A server-provided Retry-After replaces the computed delay (capped at
    ``max_delay``).
    """
    if retry_after is not None:
        return min(retry_after, config.max_delay)

    delay = config.base_delay * (config.exponential_base ** attempt)
    delay = min(delay, config.max_delay)

    if config.jitter_range:
        jitter = delay * config.jitter_range * (2 * random.random() - 1)
        delay = max(0.0, delay + jitter)

    return delay


async def with_retries(
    func: Callable,
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable] = None,
) -> Any:
    """
    Execute an async function with retry logic.

    Args:
        func: The async function to execute (no arguments — use a lambda/closure)
        config: Retry configuration (uses defaults if not specified)
        on_retry: Optional callback when a retry occurs (receives attempt, error, delay)

    Returns:
        The result of the function call

    Raises:
        The last error if all retries are exhausted, or the first
        non-retryable error.
    """
    if config is None:
        config = RetryConfig()

    for attempt in range(config.max_retries + 1):
        try:
            return await func()
        except Exception as e:
            if not is_retryable_error(e):
                logger.error(
                    "retry.non_retryable_error",
                    error_type=type(e).__name__,
                    error=str(e)[:200],
                    attempt=attempt,
                )
                raise

            if attempt >= config.max_retries:
                logger.error(
                    "retry.exhausted",
                    error_type=type(e).__name__,
                    error=str(e)[:200],
                    total_attempts=attempt + 1,
                )
                raise

            delay = compute_delay(attempt, config, _retry_after(e))

            logger.warning(
                "retry.attempt",
                error_type=type(e).__name__,
                error=str(e)[:200],
                attempt=attempt + 1,
                max_retries=config.max_retries,
                delay_seconds=round(delay, 2),
            )

            if on_retry:
                on_retry(attempt + 1, e, delay)

            await asyncio.sleep(delay)

    raise RuntimeError("unreachable: retry loop exited without result")
