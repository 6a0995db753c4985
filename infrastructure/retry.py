"""Exponential backoff retry for flaky network collaborators.

A temporary upload host or a language-model endpoint that drops one
connection should not cost a run its creative commentary. The decorator
retries the wrapped callable on the listed exception types with jittered
exponential backoff, then re-raises the last error wrapped in
``RetryExhaustedError``.

Usage::

    from infrastructure.retry import with_retry

    @with_retry(max_attempts=3, base_seconds=1.0, exceptions=(httpx.TransportError,))
    def post_file(path: str) -> str:
        ...
"""

from __future__ import annotations

import functools
import logging
import random
import time
from collections.abc import Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# Transient failures retried when no explicit list is given
DEFAULT_RETRYABLE: tuple[type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    OSError,
)


class RetryExhaustedError(RuntimeError):
    """Every attempt failed. ``__cause__`` holds the last underlying error."""

    def __init__(self, name: str, attempts: int) -> None:
        self.name = name
        self.attempts = attempts
        super().__init__(f"{name} failed after {attempts} attempts")


def backoff_delay(
    attempt: int,
    *,
    base_seconds: float,
    max_seconds: float,
    jitter: bool,
) -> float:
    """Wait before retry number ``attempt`` (1-based): base·2^(attempt-1), capped, ±25%."""
    wait = min(base_seconds * (2 ** (attempt - 1)), max_seconds)
    if jitter:
        wait *= 1 + random.uniform(-0.25, 0.25)  # noqa: S311
    return max(0.0, wait)


def with_retry(
    *,
    max_attempts: int = 3,
    base_seconds: float = 1.0,
    max_seconds: float = 30.0,
    jitter: bool = True,
    exceptions: tuple[type[Exception], ...] = DEFAULT_RETRYABLE,
    sleep: Callable[[float], None] | None = None,
) -> Callable[[F], F]:
    """Decorator factory for exponential backoff retry.

    Args:
        max_attempts: Total attempts including the first one.
        base_seconds: Wait before the first retry.
        max_seconds: Cap on any single wait.
        jitter: Randomize each wait by ±25%.
        exceptions: Exception types that trigger a retry. Anything else
            propagates immediately, unwrapped.
        sleep: Wait function. None = ``time.sleep`` looked up per call.

    Raises:
        ValueError: If ``max_attempts`` is less than 1.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_exc: Exception | None = None
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as exc:
                    last_exc = exc
                    if attempt == max_attempts:
                        break
                    wait = backoff_delay(
                        attempt, base_seconds=base_seconds, max_seconds=max_seconds, jitter=jitter
                    )
                    logger.warning(
                        "retry: %s attempt %d/%d failed (%s) — retrying in %.2fs",
                        func.__name__,
                        attempt,
                        max_attempts,
                        exc,
                        wait,
                    )
                    (sleep or time.sleep)(wait)
            raise RetryExhaustedError(func.__name__, max_attempts) from last_exc

        return wrapper  # type: ignore[return-value]

    return decorator
