"""Retry utilities with exponential backoff for handling transient failures."""

import asyncio
import random
from typing import Callable, Any, Optional
from functools import wraps
from auction_bot.core.logger import logger

class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = True
    ):
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt number with exponential backoff."""
        delay = min(
            self.initial_delay * (self.exponential_base ** attempt),
            self.max_delay
        )

        if self.jitter:
            # ±25% of delay
            delay = delay * (0.75 + random.random() * 0.5)

        return delay

def is_transient_network_error(error: BaseException) -> bool:
    """True for Chromium network failures worth another attempt."""
    message = str(error)
    return "net::" in message or "ERR_HTTP2_PROTOCOL_ERROR" in message

def retry_async(
    config: Optional[RetryConfig] = None,
    retryable_exceptions: tuple = (Exception,),
    should_retry: Optional[Callable[[BaseException], bool]] = None
):
    """
    Decorator for async functions to add retry logic with exponential backoff.

    Args:
        config: Retry configuration (defaults to RetryConfig())
        retryable_exceptions: Tuple of exception types to retry on
        should_retry: Optional predicate; errors it rejects are re-raised immediately

    Example:
        @retry_async(RetryConfig(max_retries=2), should_retry=is_transient_network_error)
        async def open_page():
            ...
    """
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(config.max_retries + 1):
                try:
                    result = await func(*args, **kwargs)

                    if attempt > 0:
                        logger.info(
                            f"Retry successful for {func.__name__} on attempt {attempt + 1}",
                            extra={'action': func.__name__, 'count': attempt + 1}
                        )

                    return result

                except retryable_exceptions as e:
                    if should_retry is not None and not should_retry(e):
                        raise

                    if attempt >= config.max_retries:
                        logger.error(
                            f"All retry attempts exhausted for {func.__name__}: {e}",
                            extra={'action': func.__name__, 'count': attempt + 1}
                        )
                        raise

                    delay = config.calculate_delay(attempt)
                    logger.warning(
                        f"Retry attempt {attempt + 1}/{config.max_retries} for {func.__name__} after {delay:.2f}s: {e}",
                        extra={'action': func.__name__, 'count': attempt + 1}
                    )
                    await asyncio.sleep(delay)

        return wrapper
    return decorator
