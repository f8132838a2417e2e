import time
import logging
import random
from typing import Type, List, Optional, Callable, Any

logger = logging.getLogger(__name__)


def call_with_backoff(
    func: Callable[[], Any],
    max_attempts: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 10.0,
    backoff_factor: float = 2.0,
    retry_on: Optional[List[Type[Exception]]] = None,
    should_retry: Optional[Callable[[Exception], bool]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
    jitter: bool = True,
    label: Optional[str] = None,
):
    """
    Call func, retrying with exponential backoff.

    Args:
        func: Zero-argument callable.
        max_attempts: Total attempts including the first.
        initial_delay: Delay before the second attempt, in seconds.
        max_delay: Cap on any single delay.
        backoff_factor: Multiplier applied to the delay after each failure.
        retry_on: Exception types eligible for retry. Defaults to all Exceptions.
        should_retry: Extra per-exception predicate, e.g. only 5xx responses.
        should_stop: Checked before and after each sleep; a True result re-raises
            the last failure instead of calling func again.
        jitter: Randomize each delay between 50% and 150%.
    """
    retry_types = tuple(retry_on or [Exception])
    name = label or getattr(func, "__name__", "call")
    delay = initial_delay

    for attempt in range(1, max_attempts + 1):
        try:
            return func()
        except retry_types as e:
            if attempt == max_attempts or (should_retry and not should_retry(e)):
                raise
            if should_stop and should_stop():
                raise

            logger.warning(f"Attempt {attempt}/{max_attempts} failed for {name}: {e}")

            current_delay = delay
            if jitter:
                current_delay *= (0.5 + random.random())
            time.sleep(min(current_delay, max_delay))
            delay *= backoff_factor
            if should_stop and should_stop():
                raise

