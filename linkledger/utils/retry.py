# linkledger/utils/retry.py
"""
Bounded retry with exponential backoff and an optional per-attempt timeout,
shared by the network gateway and the notification dispatcher.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)

# Attempts that need a timeout run here; a timed-out call keeps its thread
# until the driver gives up on its own socket.
_timeout_pool = ThreadPoolExecutor(max_workers=8, thread_name_prefix="attempt")


class RetryExhaustedError(Exception):
    def __init__(self, message: str, attempts: int, last_error: Optional[BaseException]):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class AttemptTimeoutError(Exception):
    pass


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    timeout: Optional[float] = None

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))


def _run_attempt(func: Callable[[], Any], timeout: Optional[float]) -> Any:
    if not timeout:
        return func()
    future = _timeout_pool.submit(func)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        future.cancel()
        raise AttemptTimeoutError(f"attempt timed out after {timeout}s")


def call_with_backoff(
    func: Callable[[], Any],
    policy: RetryPolicy,
    label: str = "operation",
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    give_up_on: Tuple[Type[BaseException], ...] = (),
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[Any, int]:
    """
    Call `func` until it succeeds or `policy.max_attempts` is reached.
    Returns (result, attempts_used); raises RetryExhaustedError otherwise.
    Errors in `give_up_on` end the loop at once.
    """
    last_error: Optional[BaseException] = None
    attempts = max(1, policy.max_attempts)

    for attempt in range(1, attempts + 1):
        try:
            return _run_attempt(func, policy.timeout), attempt
        except AttemptTimeoutError as e:
            last_error = e
        except retry_on as e:
            if give_up_on and isinstance(e, give_up_on):
                raise RetryExhaustedError(f"{label} failed: {e}", attempt, e) from e
            last_error = e

        if attempt < attempts:
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{label} failed (attempt {attempt}/{attempts}): {last_error}. Retrying in {delay:.1f}s"
            )
            sleep(delay)

    raise RetryExhaustedError(
        f"{label} failed after {attempts} attempts: {last_error}", attempts, last_error
    )
