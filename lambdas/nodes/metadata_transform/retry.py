"""
Retry with exponential backoff for authority vocabulary lookups.

Authority services (GND, VIAF mirrors, local resolvers) are queried once per
unknown identifier while a record is being transformed. Rate limiting and
short outages are common, so transient failures are retried a few times
before the lookup is given up and the record is indexed without authority
data.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

import requests
from aws_lambda_powertools import Logger

logger = Logger()

T = TypeVar("T")

# Rate limiting and server-side failures are worth another attempt
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 2
    initial_backoff_seconds: float = 0.5
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 4.0

    def backoff(self, attempt: int) -> float:
        """Delay before the retry following the given (0-indexed) attempt."""
        delay = self.initial_backoff_seconds * (self.backoff_multiplier**attempt)
        return min(delay, self.max_backoff_seconds)


@dataclass
class RetryResult:
    """Outcome of an operation run under retry."""

    success: bool
    result: Any | None = None
    error_message: str | None = None
    attempt_count: int = 0
    last_error: Exception | None = None


def _status_code(error: Exception) -> int | None:
    response = getattr(error, "response", None)
    return getattr(response, "status_code", None)


def is_retryable(error: Exception) -> bool:
    """Decide whether a failed lookup should be attempted again.

    Timeouts and connection failures are retried, as are HTTP errors whose
    status is in RETRYABLE_STATUS_CODES. Everything else (malformed payloads,
    4xx responses, programming errors) fails immediately.
    """
    if isinstance(error, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
        return True
    status = _status_code(error)
    return status is not None and status in RETRYABLE_STATUS_CODES


def execute_with_retry(
    operation: Callable[[], T],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> RetryResult:
    """
    Run an operation, retrying transient failures with exponential backoff.

    Args:
        operation: Callable that returns a result or raises on failure
        config: Retry configuration (defaults if omitted)
        operation_name: Name used in log messages
        sleep: Sleep function, replaceable in tests

    Returns:
        RetryResult with the operation's result or the last error
    """
    config = config or RetryConfig()
    attempts = config.max_retries + 1

    for attempt in range(attempts):
        try:
            result = operation()
        except Exception as e:
            retry = is_retryable(e) and attempt < config.max_retries
            log_extra = {
                "operation": operation_name,
                "attempt": attempt + 1,
                "error": str(e),
                "error_type": type(e).__name__,
                "status_code": _status_code(e),
            }
            if not retry:
                logger.warning(f"{operation_name} failed", extra=log_extra)
                return RetryResult(
                    success=False,
                    error_message=str(e),
                    attempt_count=attempt + 1,
                    last_error=e,
                )

            backoff = config.backoff(attempt)
            logger.warning(
                f"{operation_name} failed, retrying in {backoff}s",
                extra={**log_extra, "backoff_seconds": backoff},
            )
            sleep(backoff)
            continue

        if attempt:
            logger.info(
                f"{operation_name} succeeded after retry",
                extra={"operation": operation_name, "attempt": attempt + 1},
            )
        return RetryResult(success=True, result=result, attempt_count=attempt + 1)

    return RetryResult(success=False, error_message="No attempts made", attempt_count=0)
