"""
Retrying call executor with bounded exponential backoff.

Features:
- Configurable retry counts and delays
- Exponential backoff capped at max_delay
- Provider retry hints (Retry-After) override the computed delay
- Retryable failure classification through a single predicate
- Structured logging for observability

Backoff is deterministic by default (``jitter_factor=0``): the same failure
sequence always produces the same attempt count and the same delays. Jitter
can be enabled per provider to spread retries from many workers.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from shared.error_classification import is_retryable, retry_hint

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    ``max_retries`` counts retries, so a call is attempted at most
    ``max_retries + 1`` times.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.0
    retryable: Callable[[Exception], bool] = field(default=is_retryable, compare=False)

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must not be negative, got {self.max_retries}")


@dataclass(frozen=True)
class CallOutcome:
    """Classified result of a single attempt.

    ``status`` is one of ``success``, ``retryable`` or ``fatal``.
    """

    status: str
    attempt: int
    value: Any = None
    error: Optional[Exception] = None
    retry_after: Optional[float] = None

    @classmethod
    def success(cls, attempt: int, value: Any) -> "CallOutcome":
        return cls("success", attempt, value=value)

    @classmethod
    def from_error(cls, attempt: int, error: Exception, config: RetryConfig) -> "CallOutcome":
        if config.retryable(error):
            return cls("retryable", attempt, error=error, retry_after=retry_hint(error))
        return cls("fatal", attempt, error=error)

    @property
    def is_retryable(self) -> bool:
        return self.status == "retryable"


def calculate_delay(attempt: int, config: RetryConfig, retry_after: Optional[float] = None) -> float:
    """Calculate the delay before retry number ``attempt + 1``.

    ``attempt`` is zero-based: the first retry waits ``base_delay``. A
    provider retry hint replaces the computed value. Both are capped at
    ``max_delay``.
    """
    if retry_after is not None:
        return min(max(0.0, retry_after), config.max_delay)

    delay = min(config.base_delay * (config.exponential_base**attempt), config.max_delay)

    if config.jitter_factor:
        jitter = random.uniform(0, delay * config.jitter_factor)
        delay = min(delay + jitter, config.max_delay)

    return delay


def _func_name(func: Callable) -> str:
    return getattr(func, "__qualname__", None) or getattr(func, "__name__", None) or repr(func)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    config: Optional[RetryConfig] = None,
    sleep: SleepFunc = asyncio.sleep,
    **kwargs,
) -> T:
    """
    Execute async function with retry logic.

    Args:
        func: Async function to call
        *args: Positional arguments for func
        config: Retry configuration
        sleep: Awaitable used between attempts (injectable for tests)
        **kwargs: Keyword arguments for func

    Returns:
        Result from successful function call

    Raises:
        The final error once retries are exhausted, or the first
        non-retryable error.
    """
    config = config or RetryConfig()
    name = _func_name(func)

    for attempt in range(config.max_retries + 1):
        try:
            outcome = CallOutcome.success(attempt + 1, await func(*args, **kwargs))
        except Exception as e:
            outcome = CallOutcome.from_error(attempt + 1, e, config)

            if not outcome.is_retryable:
                raise

            if attempt == config.max_retries:
                logger.error(
                    f"All {config.max_retries + 1} attempts failed for {name}",
                    extra={
                        "function": name,
                        "attempts": config.max_retries + 1,
                        "final_error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                raise

            delay = calculate_delay(attempt, config, outcome.retry_after)

            logger.warning(
                f"Attempt {attempt + 1}/{config.max_retries + 1} failed for "
                f"{name}, retrying in {delay:.2f}s: {e}",
                extra={
                    "function": name,
                    "attempt": attempt + 1,
                    "delay_seconds": delay,
                    "retry_after_hint": outcome.retry_after,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )

            await sleep(delay)
            continue

        if outcome.attempt > 1:
            logger.info(
                f"{name} succeeded on attempt {outcome.attempt}",
                extra={"function": name, "attempt": outcome.attempt},
            )
        return outcome.value

    raise RuntimeError("Unexpected retry state")


async def execute(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    sleep: SleepFunc = asyncio.sleep,
) -> T:
    """Run ``func`` with bounded exponential-backoff retry."""
    config = RetryConfig(max_retries=max_retries, base_delay=base_delay, max_delay=max_delay)
    return await retry_async(func, config=config, sleep=sleep)
