"""Retry policy with exponential backoff for DeepStack API calls."""
import random
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from deepstack_vision.core.exceptions import NetworkError, ServiceTimeoutError
from deepstack_vision.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

NETWORK_ERRORS: Tuple[Type[Exception], ...] = (NetworkError, ServiceTimeoutError)


class RetryPolicy:
    """How often and how patiently a capability retries network-class failures.

    The wait before attempt ``n + 1`` is ``base_delay * 2 ** (n - 1)`` plus
    a uniform jitter in ``[0, jitter]``. Only exceptions listed in
    ``retry_on`` are retried; anything else propagates immediately.

    Example:
        ```python
        policy = RetryPolicy(max_attempts=3, base_delay=2.0)
        payload = policy.call(client.post, "/v1/vision/face/register", files=files)
        ```
    """

    def __init__(
        self,
        max_attempts: int = 1,
        base_delay: float = 2.0,
        jitter: float = 0.0,
        retry_on: Tuple[Type[Exception], ...] = NETWORK_ERRORS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.jitter = jitter
        self.retry_on = retry_on
        self.sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        delay = self.base_delay * (2 ** (attempt - 1))
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """Call ``fn`` until it succeeds or attempts run out.

        Raises:
            The last retryable exception once ``max_attempts`` is exhausted,
            or any non-retryable exception as soon as it occurs.
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn(*args, **kwargs)
            except self.retry_on as e:
                last_error = e
                if attempt == self.max_attempts:
                    break
                delay = self.delay_for(attempt)
                logger.warning(
                    "Retryable failure, backing off",
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    delay=delay,
                    error=str(e),
                )
                self.sleep(delay)

        if self.max_attempts > 1:
            logger.error("Giving up after retries", attempts=self.max_attempts, error=str(last_error))
        raise last_error


def single_attempt(sleep: Callable[[float], None] = time.sleep) -> RetryPolicy:
    """Policy used by read-style capabilities: one try, errors surface at once."""
    return RetryPolicy(max_attempts=1, sleep=sleep)


def registration_retry(sleep: Callable[[float], None] = time.sleep) -> RetryPolicy:
    """Policy used by face registration: 3 attempts, waiting 2s then 4s."""
    return RetryPolicy(max_attempts=3, base_delay=2.0, sleep=sleep)
