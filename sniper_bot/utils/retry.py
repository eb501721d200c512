"""
Retry helpers for robust async operations.

RetryExecutor wraps every outbound trade attempt with bounded exponential
backoff and jitter. async_retry is the decorator form used by adapters for
plain network reads.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..exceptions import ExecutionError, TerminalTradeFailure, TransientTradeFailure
from .rate_limiter import TokenBucket

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempt budget for one call to RetryExecutor.execute_with_retry.

    label is only used for logs and statistics. Labels read "kind:subject"
    (e.g. "buy:Mint1234"); statistics are kept per kind.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    label: str = "operation"
    max_delay: float = 30.0
    jitter: float = 1.0
    attempt_timeout: Optional[float] = 30.0

    @classmethod
    def from_config(cls, config, label: str = "operation") -> "RetryPolicy":
        """Build from a RetryConfig section of the strategy file"""
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_sec,
            label=label,
            max_delay=config.max_delay_sec,
            jitter=config.jitter_sec,
            attempt_timeout=config.attempt_timeout_sec or None,
        )

    @property
    def operation(self) -> str:
        return self.label.split(":", 1)[0]

    def with_label(self, label: str) -> "RetryPolicy":
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            label=label,
            max_delay=self.max_delay,
            jitter=self.jitter,
            attempt_timeout=self.attempt_timeout,
        )

    def single_attempt(self, label: str) -> "RetryPolicy":
        return RetryPolicy(
            max_attempts=1,
            base_delay=self.base_delay,
            label=label,
            max_delay=self.max_delay,
            jitter=self.jitter,
            attempt_timeout=self.attempt_timeout,
        )


@dataclass
class RetryStats:
    calls: int = 0
    successes: int = 0
    failures: int = 0
    retries: int = 0


class RetryExecutor:
    """
    Bounded exponential backoff around an async operation.

    - Waits base_delay * 2^(attempt-1) + uniform(0, jitter) between attempts,
      capped at max_delay.
    - Any Exception is a failed attempt; a stalled attempt is cut off by
      attempt_timeout and counted as a transient failure.
    - TerminalTradeFailure is re-raised at once, budget untouched.
    - After the last attempt raises ExecutionError(attempts, last_error).

    The executor adds no side effects of its own; whether the wrapped
    operation may be repeated is the caller's concern.
    """

    def __init__(
        self,
        rate_limiter: Optional[TokenBucket] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.rate_limiter = rate_limiter
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._stats: dict[str, RetryStats] = {}

    def compute_delay(self, policy: RetryPolicy, attempt: int) -> float:
        """Delay to wait after failed attempt number `attempt` (1-based)"""
        exponential = policy.base_delay * (2 ** (attempt - 1))
        jitter = self._rng.uniform(0, policy.jitter) if policy.jitter > 0 else 0.0
        return min(exponential + jitter, policy.max_delay)

    async def execute_with_retry(self, operation: Callable[[], Awaitable[T]], policy: RetryPolicy) -> T:
        if policy.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        stats = self._stats.setdefault(policy.operation, RetryStats())
        stats.calls += 1
        last_error: Optional[BaseException] = None

        for attempt in range(1, policy.max_attempts + 1):
            if self.rate_limiter is not None:
                await self.rate_limiter.acquire()

            try:
                if policy.attempt_timeout:
                    result = await asyncio.wait_for(operation(), timeout=policy.attempt_timeout)
                else:
                    result = await operation()
            except TerminalTradeFailure as e:
                stats.failures += 1
                logger.error(
                    f"❌ {policy.label} rejected on attempt {attempt}/{policy.max_attempts}, not retrying: {e}"
                )
                raise
            except asyncio.TimeoutError:
                last_error = TransientTradeFailure(
                    "Attempt timed out", label=policy.label, timeout=policy.attempt_timeout
                )
            except Exception as e:
                last_error = e
            else:
                stats.successes += 1
                if attempt > 1:
                    logger.info(f"✅ {policy.label} succeeded on attempt {attempt}")
                return result

            if attempt < policy.max_attempts:
                stats.retries += 1
                delay = self.compute_delay(policy, attempt)
                logger.warning(
                    f"⚠️ {policy.label} attempt {attempt}/{policy.max_attempts} failed, retrying in {delay:.2f}s",
                    extra={
                        "label": policy.label,
                        "attempt": attempt,
                        "max_attempts": policy.max_attempts,
                        "delay": delay,
                        "error": str(last_error),
                    },
                )
                await self._sleep(delay)

        stats.failures += 1
        logger.error(
            f"❌ {policy.label} failed after {policy.max_attempts} attempts: {last_error}",
            extra={"label": policy.label, "attempts": policy.max_attempts, "error": str(last_error)},
        )
        raise ExecutionError(
            f"{policy.label} failed after {policy.max_attempts} attempts",
            attempts=policy.max_attempts,
            last_error=last_error,
            last=str(last_error),
        ) from last_error

    def get_retry_stats(self) -> dict:
        """Retry statistics for monitoring"""
        with_retries = {k: v for k, v in self._stats.items() if v.retries > 0}
        total_retries = sum(v.retries for v in with_retries.values())
        top_failing = sorted(
            ({"operation": k, "failures": v.failures} for k, v in self._stats.items() if v.failures > 0),
            key=lambda item: item["failures"],
            reverse=True,
        )[:5]
        return {
            "total_operations": len(self._stats),
            "operations_with_retries": len(with_retries),
            "average_retries": total_retries / len(with_retries) if with_retries else 0.0,
            "top_failing_operations": top_failing,
        }

    def clear_history(self) -> None:
        self._stats.clear()


def async_retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple = (Exception,)
):
    """
    Retry async function with exponential backoff.

    Args:
        max_attempts: Maximum number of retry attempts
        delay: Initial delay between retries (seconds)
        backoff: Multiplier for delay on each retry
        exceptions: Tuple of exception types to catch

    Example:
        @async_retry(max_attempts=3, delay=0.5)
        async def fetch_balance():
            ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts - 1:
                        logger.error(
                            f"{func.__name__} failed after {max_attempts} attempts",
                            extra={
                                "function": func.__name__,
                                "attempts": max_attempts,
                                "error": str(e)
                            }
                        )
                        raise

                    current_delay = delay * (backoff ** attempt)
                    logger.warning(
                        f"{func.__name__} failed, retrying in {current_delay:.1f}s",
                        extra={
                            "function": func.__name__,
                            "attempt": attempt + 1,
                            "max_attempts": max_attempts,
                            "delay": current_delay,
                            "error": str(e)
                        }
                    )
                    await asyncio.sleep(current_delay)
            raise RuntimeError("unreachable")

        return wrapper
    return decorator
