"""
Utility functions for the order import service.
Includes retry logic for transient database errors and small value helpers.
"""
import asyncio
import functools
import logging
import random
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, Type, TypeVar
from sqlalchemy.exc import (
    OperationalError,
    InterfaceError,
    TimeoutError as SQLAlchemyTimeoutError,
    DisconnectionError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

CENT = Decimal("0.01")

# Transient database errors that should be retried
TRANSIENT_DB_ERRORS: Tuple[Type[Exception], ...] = (
    OperationalError,
    InterfaceError,
    SQLAlchemyTimeoutError,
    DisconnectionError,
    ConnectionError,
    TimeoutError,
)


def is_transient_error(exc: Exception) -> bool:
    """Check if an exception is a transient error that should be retried."""
    if isinstance(exc, TRANSIENT_DB_ERRORS):
        return True

    error_msg = str(exc).lower()
    transient_patterns = [
        "connection refused",
        "connection reset",
        "connection timed out",
        "timeout",
        "too many connections",
        "server closed the connection",
        "connection pool exhausted",
        "could not connect",
        "temporarily unavailable",
        "40001",  # Serialization failure (PostgreSQL)
    ]
    return any(pattern in error_msg for pattern in transient_patterns)


def retry_async(
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    exponential_backoff: bool = True,
    jitter: bool = True,
    retry_on: Optional[Tuple[Type[Exception], ...]] = None,
):
    """
    Decorator for async functions that retries on transient failures.

    Only use it on reads: a retried insert could write the same row twice.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_backoff: Whether to use exponential backoff
        jitter: Whether to add random jitter to delays
        retry_on: Tuple of exception types to retry on (defaults to transient DB errors)
    """
    def decorator(func: Callable):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if retry_on:
                        should_retry = isinstance(e, retry_on)
                    else:
                        should_retry = is_transient_error(e)

                    if not should_retry or attempt >= max_retries:
                        raise

                    if exponential_backoff:
                        delay = min(base_delay * (2 ** attempt), max_delay)
                    else:
                        delay = base_delay

                    if jitter:
                        delay = delay * (0.5 + random.random())  # 50-150% of delay

                    logger.warning(
                        f"Retry {attempt + 1}/{max_retries} for {func.__name__} "
                        f"after {delay:.2f}s due to: {type(e).__name__}: {str(e)[:100]}"
                    )
                    await asyncio.sleep(delay)

        return wrapper
    return decorator


def round_money(value: Decimal) -> Decimal:
    """Round to cents, half up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def chunked(items: Sequence[T], size: int = 500) -> Iterator[List[T]]:
    """Yield consecutive slices of ``items`` (keeps IN (...) lists bounded)."""
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def sanitize_string(value: Optional[str], max_length: int = 1000, default: str = "") -> str:
    """Sanitize a string value for safe storage."""
    if value is None:
        return default
    # Remove null bytes and other problematic characters
    cleaned = str(value).replace("\x00", "").strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length]
    return cleaned
