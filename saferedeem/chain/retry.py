"""Bounded fixed-delay retry for read-only chain calls."""

import logging
import time
from collections.abc import Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_DELAY_SECONDS = 2.0


def with_retry(
    operation: Callable[[], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    delay: float = DEFAULT_DELAY_SECONDS,
    *,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Invoke ``operation`` until it succeeds or ``max_attempts`` is reached.

    The delay between attempts is fixed. Errors outside ``retry_on`` propagate
    immediately and the last failure is re-raised unmodified.

    Only wrap idempotent reads here. Submitting a signed transaction must never
    go through this helper.

    Args:
        operation: Zero-argument callable to invoke
        max_attempts: Total number of attempts, including the first
        delay: Seconds to wait between attempts
        retry_on: Exception types that trigger another attempt
        description: Label used in log messages
        sleep: Sleep function (injectable for tests)

    Returns:
        The operation's return value
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except retry_on as e:
            if attempt == max_attempts:
                raise
            logger.warning(
                f"{description} failed (attempt {attempt}/{max_attempts}): {e}; "
                f"retrying in {delay}s"
            )
            sleep(delay)

    raise AssertionError("unreachable")
