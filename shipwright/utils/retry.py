# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Bounded retry and polling.

Two shapes of waiting show up in the pipeline:

  - retry: call an operation until it succeeds, sleeping between attempts
    with a delay that grows. Used for GitHub release creation and installer
    downloads.
  - poll: ask a yes/no question every N seconds until it says yes or a
    deadline passes. Used for docker daemon and buildx builder readiness.

Both always terminate. A retry stops after `max_attempts`, a poll after
`timeout_seconds`. `sleep` is injectable so tests never actually wait.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from shipwright.logging.logger import get_logger
from shipwright.release.exceptions import PollTimeoutError, RetryExhaustedError

_logger: logging.Logger = get_logger(__name__)

T = TypeVar("T")

DelayFn = Callable[[int], float]
SleepFn = Callable[[float], None]


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times to try and how long to wait in between.

    The delay before retry n (1-based) is
    initial_delay_seconds * backoff_factor ** (n - 1).
    """

    max_attempts: int = 3
    initial_delay_seconds: float = 5.0
    backoff_factor: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_delay_seconds < 0:
            raise ValueError("initial_delay_seconds must be >= 0")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")

    def delay_for(self, retry_number: int) -> float:
        return exponential_backoff(self.initial_delay_seconds, self.backoff_factor)(retry_number)


SINGLE_ATTEMPT = RetryPolicy(max_attempts=1, initial_delay_seconds=0.0)


def exponential_backoff(initial_seconds: float, factor: float = 2.0) -> DelayFn:
    """Delay function: initial, initial*factor, initial*factor**2, ..."""

    def _delay(retry_number: int) -> float:
        return initial_seconds * (factor ** (retry_number - 1))

    return _delay


def retry_with_backoff(
    operation: Callable[[], T],
    *,
    max_attempts: int,
    delay_fn: DelayFn,
    should_retry: Callable[[BaseException], bool],
    description: str,
    sleep: SleepFn = time.sleep,
    logger: Optional[logging.Logger] = None,
) -> T:
    """
    Call `operation` until it returns, at most `max_attempts` times.

    An exception for which `should_retry` is False propagates immediately.
    A retryable exception on the last attempt is wrapped in
    RetryExhaustedError, with the original kept as `last_error` and as the
    exception cause.

    Args:
        operation: Zero-argument callable to attempt.
        max_attempts: Total attempts, including the first.
        delay_fn: Maps the 1-based retry number to seconds to sleep.
        should_retry: Predicate deciding whether an exception is transient.
        description: Human-readable name used in log lines and errors.
        sleep: Sleep function, replaced in tests.
        logger: Logger for retry warnings. Defaults to this module's logger.

    Returns:
        Whatever `operation` returned on the successful attempt.
    """
    log = logger or _logger
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except Exception as err:
            if not should_retry(err):
                raise
            if attempt >= max_attempts:
                log.error(
                    f"{description} failed after {max_attempts} attempts",
                    extra={"attempts": attempt, "error": str(err)},
                )
                raise RetryExhaustedError(description, attempt, err) from err

            wait = delay_fn(attempt)
            log.warning(
                f"{description} failed, retrying in {wait:g} seconds",
                extra={"attempt": attempt, "max_attempts": max_attempts, "error": str(err)},
            )
            sleep(wait)


def retry_with_policy(
    operation: Callable[[], T],
    policy: RetryPolicy,
    *,
    should_retry: Callable[[BaseException], bool],
    description: str,
    sleep: SleepFn = time.sleep,
    logger: Optional[logging.Logger] = None,
) -> T:
    """retry_with_backoff driven by a RetryPolicy."""
    return retry_with_backoff(
        operation,
        max_attempts=policy.max_attempts,
        delay_fn=policy.delay_for,
        should_retry=should_retry,
        description=description,
        sleep=sleep,
        logger=logger,
    )


def poll_until(
    predicate: Callable[[], bool],
    *,
    timeout_seconds: float,
    interval_seconds: float,
    description: str,
    sleep: SleepFn = time.sleep,
    logger: Optional[logging.Logger] = None,
) -> int:
    """
    Evaluate `predicate` until it returns True.

    The number of checks is timeout_seconds // interval_seconds (at least
    one), which keeps the loop bounded even when `sleep` is a no-op stub.

    Returns:
        The number of checks it took.

    Raises:
        PollTimeoutError: If the predicate never became true.
    """
    log = logger or _logger
    if interval_seconds <= 0:
        raise ValueError("interval_seconds must be > 0")

    max_checks = max(1, int(timeout_seconds // interval_seconds))
    for check in range(1, max_checks + 1):
        if predicate():
            return check
        if check < max_checks:
            log.warning(
                f"Waiting for {description}",
                extra={"check": check, "max_checks": max_checks},
            )
            sleep(interval_seconds)

    raise PollTimeoutError(f"Timed out after {timeout_seconds:g} seconds waiting for {description}")
