"""Bounded retry wrapper for a single remote call."""

import asyncio
import random
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from common.exceptions import RateLimited, TransientServerError
from common.logging_config import get_logger
from orchestrator.config import BACKOFF_BASE_SECONDS, BACKOFF_CAP_SECONDS, MAX_ATTEMPTS

logger = get_logger(__name__)

T = TypeVar("T")


class FailureKind(Enum):
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    PERMANENT = "permanent"


def classify_error(error: BaseException) -> FailureKind:
    """
    Default classification of a failed remote call.

    Timeouts, connection failures and 5xx responses are transient; 429 is
    rate limited; everything else (validation, auth, 4xx) is permanent.
    """
    if isinstance(error, RateLimited):
        return FailureKind.RATE_LIMITED
    if isinstance(error, TransientServerError):
        return FailureKind.TRANSIENT
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return FailureKind.TRANSIENT
    if isinstance(error, (asyncio.TimeoutError, ConnectionError)):
        return FailureKind.TRANSIENT
    return FailureKind.PERMANENT


class RetryPolicy:
    """
    Retry transient failures with exponential backoff and jitter.

    Rate-limited failures get a single retry after the server's indicated
    wait; permanent failures are raised on the first attempt.
    """

    def __init__(
        self,
        max_attempts: int = MAX_ATTEMPTS,
        base_delay: float = BACKOFF_BASE_SECONDS,
        max_delay: float = BACKOFF_CAP_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._jitter = jitter

    def backoff_delay(self, attempt: int) -> float:
        """
        Delay before the attempt following `attempt` (1-based).

        Half of the exponential step is fixed, the other half is jittered.
        """
        step = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        return step / 2 + self._jitter() * step / 2

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        classify: Callable[[BaseException], FailureKind] = classify_error,
        description: Optional[str] = None,
    ) -> T:
        """
        Run operation, retrying according to classify.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            classify: Maps a raised exception to a FailureKind
            description: Label used in log messages

        Returns:
            The first successful result

        Raises:
            The last observed exception when attempts are exhausted or the
            failure is not retryable
        """
        label = description or getattr(operation, "__name__", "operation")
        rate_limit_retried = False
        attempt = 0

        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as e:
                kind = classify(e)

                if kind is FailureKind.PERMANENT:
                    logger.debug(f"{label}: permanent failure on attempt {attempt}: {e}")
                    raise

                if attempt >= self.max_attempts:
                    logger.warning(
                        f"{label}: giving up after {attempt}/{self.max_attempts} attempts: {e}"
                    )
                    raise

                if kind is FailureKind.RATE_LIMITED:
                    if rate_limit_retried:
                        logger.warning(f"{label}: rate limited again, not retrying: {e}")
                        raise
                    rate_limit_retried = True
                    delay = max(0.0, float(getattr(e, "retry_after", self.base_delay)))
                    logger.warning(
                        f"{label}: rate limited (attempt {attempt}/{self.max_attempts}), "
                        f"retrying once in {delay:.2f}s"
                    )
                else:
                    delay = self.backoff_delay(attempt)
                    logger.warning(
                        f"{label}: transient failure (attempt {attempt}/{self.max_attempts}): "
                        f"{type(e).__name__}: {e}, retrying in {delay:.2f}s"
                    )

                await self._sleep(delay)
