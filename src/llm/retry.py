# src/llm/retry.py — v3
"""Retry/backoff executor wrapping every remote call.

Delay before attempt i (i >= 2) is base_delay * 2^(i-2), capped at
max_delay. Each attempt runs under its own timeout; a timed-out attempt
counts as a failed attempt. Non-retryable errors abort immediately.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from evidencerank.core.errors import (
    RemoteTimeout,
    RetryExhausted,
    classify_error,
    is_retryable,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration for one kind of remote call."""

    max_attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    timeout_s: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_s < 0 or self.max_delay_s < 0:
            raise ValueError("delays must be >= 0")

    def delay_before(self, attempt: int) -> float:
        """Delay in seconds before a 1-based attempt number."""
        if attempt < 2:
            return 0.0
        return min(self.base_delay_s * (2 ** (attempt - 2)), self.max_delay_s)


class RetryExecutor:
    """Runs async operations under a RetryPolicy.

    Stateless apart from its injected sleep function, so one instance is
    safely shared by concurrent queries.
    """

    def __init__(
        self, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ) -> None:
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        name: str = "remote_call",
    ) -> T:
        """Execute an async operation with timeout and retry.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt.
            policy: Attempts, backoff and per-attempt timeout.
            name: Operation name for logs and the raised error.

        Returns:
            The operation's result.

        Raises:
            RetryExhausted: All attempts failed, or a non-retryable error occurred.
        """
        attempt = 0
        while True:
            attempt += 1
            delay = policy.delay_before(attempt)
            if delay > 0:
                await self._sleep(delay)
            try:
                if policy.timeout_s is None:
                    return await operation()
                return await asyncio.wait_for(operation(), timeout=policy.timeout_s)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error: Exception = e
                if isinstance(e, (asyncio.TimeoutError, TimeoutError)):
                    if policy.timeout_s is not None:
                        error = RemoteTimeout(
                            f"{name} timed out after {policy.timeout_s:.1f}s"
                        )
                    else:
                        error = RemoteTimeout(f"{name} timed out: {e}")
                error_type = classify_error(error)

                if not is_retryable(error):
                    logger.warning(
                        "Operation '%s' - non-retryable %s on attempt %d: %s",
                        name, error_type, attempt, error,
                    )
                    raise RetryExhausted(name, error_type, attempt, error) from e

                if attempt >= policy.max_attempts:
                    logger.warning(
                        "Operation '%s' - %s, giving up after %d attempt(s)",
                        name, error_type, attempt,
                    )
                    raise RetryExhausted(name, error_type, attempt, error) from e

                logger.warning(
                    "Operation '%s' - %s (attempt %d/%d), retrying in %.1fs",
                    name, error_type, attempt, policy.max_attempts,
                    policy.delay_before(attempt + 1),
                )
