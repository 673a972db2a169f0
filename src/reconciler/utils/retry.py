"""Retry strategy with exponential backoff for provider calls."""

import time
import random
from typing import Callable, TypeVar, Optional

from reconciler.utils.errors import ProviderError, error_handler
from reconciler.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


def _sleep(delay: float) -> bool:
    time.sleep(delay)
    return True


class RetryStrategy:
    """Implements exponential backoff retry strategy for transient errors."""

    def __init__(
        self,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True
    ):
        """Initialize retry strategy.

        Args:
            max_attempts: Maximum number of attempts, the first call included
            base_delay: Base delay in seconds for first retry
            max_delay: Maximum delay in seconds between retries
            exponential_base: Base for exponential backoff calculation
            jitter: Whether to add random jitter to delay
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    def is_transient(self, error: Exception) -> bool:
        """Check whether an error is classified as transient."""
        return error_handler.classify(error).transient

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """Determine if an error should trigger a retry.

        Args:
            error: The exception that occurred
            attempt: Number of attempts made so far (1-indexed)

        Returns:
            True if the error is transient and the attempt ceiling is not reached
        """
        if attempt >= self.max_attempts:
            return False
        return self.is_transient(error)

    def get_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Number of attempts made so far (1-indexed)

        Returns:
            Delay in seconds before next retry
        """
        delay = min(
            self.base_delay * (self.exponential_base ** (attempt - 1)),
            self.max_delay
        )

        # Jitter: random value between 0 and 10% of delay
        if self.jitter:
            delay += random.uniform(0, delay * 0.1)

        return delay

    def execute_with_retry(
        self,
        func: Callable[..., T],
        *args,
        wait: Callable[[float], bool] = _sleep,
        on_attempt: Optional[Callable[[int], None]] = None,
        **kwargs
    ) -> T:
        """Execute a function with retry logic.

        Args:
            func: Function to execute
            *args: Positional arguments for the function
            wait: Called with the backoff delay; returns False to abandon
                the remaining retries
            on_attempt: Called with the attempt number before each attempt
            **kwargs: Keyword arguments for the function

        Returns:
            Result of the function call

        Raises:
            The last exception if it is permanent, retries are exhausted or
            the wait was interrupted
        """
        attempt = 0
        while True:
            attempt += 1
            if on_attempt:
                on_attempt(attempt)

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                if not self.should_retry(e, attempt):
                    if self.is_transient(e):
                        logger.error(f"All {self.max_attempts} attempts exhausted: {e}")
                    else:
                        logger.debug(f"Error is not retryable: {e}")
                    raise

                delay = self.get_delay(attempt)
                logger.warning(
                    f"Attempt {attempt}/{self.max_attempts} failed: {self._get_error_info(e)}. "
                    f"Retrying in {delay:.2f}s..."
                )

                if not wait(delay):
                    logger.info("Retry wait interrupted, giving up")
                    raise
                continue

            if attempt > 1:
                logger.info(f"Operation succeeded after {attempt - 1} retries")
            return result

    def _get_error_info(self, error: Exception) -> str:
        """Extract useful error information for logging.

        Args:
            error: The exception

        Returns:
            Human-readable error description
        """
        if isinstance(error, ProviderError):
            return f"{error.code}: {error.message}"

        return f"{type(error).__name__}: {str(error)}"
