"""
Retry Policy for Outbound Calls

Every call to a collaborator (text generation, search, page fetch,
messaging) runs through ``with_retry``: bounded attempts, a per-attempt
timeout and a linear backoff between attempts. A timed-out attempt is
abandoned and counted as failed.

Usage:
    policy = RetryPolicy.from_settings(settings)
    html = await with_retry(lambda: client.get(url), policy, operation="fetch_page")
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from concierge.core.exceptions import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry configuration for one kind of outbound call.

    Attributes:
        attempts: Maximum number of attempts (>= 1)
        backoff_seconds: Delay step; attempt N waits N * backoff_seconds
        timeout_seconds: Limit for a single attempt
    """
    attempts: int = 3
    backoff_seconds: float = 1.0
    timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            attempts=settings.retry_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
            timeout_seconds=settings.request_timeout_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt``."""
        return self.backoff_seconds * attempt


async def with_retry(
    call: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation: str,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
) -> T:
    """
    Run ``call`` under ``policy``.

    Args:
        call: Zero-argument coroutine factory, invoked once per attempt
        policy: Attempts, backoff and timeout
        operation: Name used in logs and in the raised error
        retry_on: Exception types that count as a failed attempt;
            anything else propagates immediately
        sleep: Replacement for ``asyncio.sleep`` (tests)

    Returns:
        The first successful result

    Raises:
        RetryExhaustedError: If every attempt failed or timed out
    """
    sleep = sleep or asyncio.sleep
    last_error: Optional[BaseException] = None

    for attempt in range(1, policy.attempts + 1):
        try:
            return await asyncio.wait_for(call(), timeout=policy.timeout_seconds)
        except asyncio.TimeoutError as e:
            last_error = e
            logger.warning(
                f"{operation}: attempt {attempt}/{policy.attempts} timed out "
                f"after {policy.timeout_seconds}s"
            )
        except retry_on as e:
            last_error = e
            logger.warning(f"{operation}: attempt {attempt}/{policy.attempts} failed - {e}")

        if attempt < policy.attempts:
            await sleep(policy.delay_for(attempt))

    raise RetryExhaustedError(operation, policy.attempts, last_error)
