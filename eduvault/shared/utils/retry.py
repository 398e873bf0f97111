"""Bounded calls to external stores.

Every call the core makes to an external store is bounded in time and
retried a limited number of times on transient failure:
- call_with_timeout: runs the call on a worker thread, waits at most N seconds
- retry_call: exponential backoff with jitter for StoreUnavailableError
"""
import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, Optional, Tuple, Type, TypeVar

from eduvault.shared.database.repository import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 0.05
DEFAULT_MAX_DELAY = 1.0

# Shared pool for bounded store calls; a timed-out call keeps its worker
# until the store returns, the caller does not wait for it.
_executor = ThreadPoolExecutor(max_workers=16, thread_name_prefix="eduvault-store")


def backoff_delay(
    attempt: int,
    base: float = DEFAULT_BASE_DELAY,
    cap: float = DEFAULT_MAX_DELAY,
    jitter: float = 0.25,
) -> float:
    """Delay in seconds before retry number `attempt` (1-based)."""
    delay = min(cap, base * (2 ** max(0, attempt - 1)))
    return max(0.0, delay * (1.0 - jitter + random.random() * jitter * 2))


def call_with_timeout(
    func: Callable[..., T],
    *args,
    timeout: Optional[float] = None,
    operation: str = "store_call",
    **kwargs,
) -> T:
    """Run a store call and give up after `timeout` seconds.

    Args:
        func: Callable to invoke
        timeout: Seconds to wait; None calls inline without a bound
        operation: Name used in logs and errors

    Returns:
        The call's result

    Raises:
        StoreUnavailableError: If the call does not finish in time
    """
    if timeout is None:
        return func(*args, **kwargs)

    future = _executor.submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        logger.warning(
            "STORE_CALL_TIMEOUT",
            extra={"operation": operation, "timeout_seconds": timeout}
        )
        raise StoreUnavailableError(f"{operation} timed out after {timeout}s")


def retry_call(
    func: Callable[[], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    retry_on: Tuple[Type[BaseException], ...] = (StoreUnavailableError,),
    operation: str = "store_call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call `func`, retrying transient failures with backoff.

    Args:
        func: Zero-argument callable
        max_attempts: Total attempts including the first
        retry_on: Exception types treated as transient
        operation: Name used in logs
        sleep: Injected for tests

    Returns:
        The call's result

    Raises:
        The last transient error once attempts are exhausted; any
        non-transient error immediately.
    """
    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as e:
            if attempt >= attempts:
                logger.error(
                    "STORE_RETRIES_EXHAUSTED",
                    extra={
                        "operation": operation,
                        "attempts": attempt,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                )
                raise
            delay = backoff_delay(attempt, base=base_delay, cap=max_delay)
            logger.warning(
                "STORE_CALL_RETRY",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "delay_seconds": round(delay, 3),
                    "error": str(e),
                }
            )
            sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover
