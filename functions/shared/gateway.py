"""
Provider gateway - the single path for upstream calls.

Every attempt is admitted through the provider's rate window and then
executed; failures are mapped onto the collector error taxonomy and fed to
the retrying executor. Each retry is a fresh upstream request, so each
attempt consumes its own rate-limit slot.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

from shared.error_classification import classify_error, error_from_exception, sanitize_error
from shared.errors import CollectorError
from shared.logging_utils import log_external_call
from shared.rate_limiter import Provider, RateLimiterRegistry
from shared.retry import RetryConfig, SleepFunc, retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _operation_name(func: Callable) -> str:
    # functools.partial hides the wrapped function's name
    target = getattr(func, "func", func)
    return getattr(target, "__name__", None) or type(target).__name__


class ProviderGateway:
    """Rate-limited, retrying executor for calls to upstream providers."""

    def __init__(
        self,
        registry: RateLimiterRegistry,
        retry_configs: Optional[Mapping[Provider, RetryConfig]] = None,
        default_retry: Optional[RetryConfig] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.registry = registry
        self.retry_configs = dict(retry_configs or {})
        self.default_retry = default_retry or RetryConfig()
        self._sleep = sleep

    def retry_config_for(self, provider: Provider) -> RetryConfig:
        return self.retry_configs.get(provider, self.default_retry)

    async def call(
        self,
        provider: Provider,
        func: Callable[..., Awaitable[T]],
        /,
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Call ``func(*args, **kwargs)`` against ``provider``.

        Raises:
            CollectorError: mapped failure after retries are exhausted or on
                the first non-retryable failure.
        """
        operation = _operation_name(func)

        async def attempt() -> T:
            await self.registry.admit(provider)
            start = time.time()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                mapped = error_from_exception(e, provider.value)
                if isinstance(mapped, CollectorError) and mapped.provider is None:
                    mapped.provider = provider.value
                log_external_call(
                    logger,
                    provider.value,
                    operation,
                    success=False,
                    latency_ms=(time.time() - start) * 1000,
                    error=sanitize_error(str(mapped)),
                    error_class=classify_error(str(mapped)),
                )
                if mapped is e:
                    raise
                raise mapped from e

            log_external_call(
                logger,
                provider.value,
                operation,
                success=True,
                latency_ms=(time.time() - start) * 1000,
            )
            return result

        attempt.__qualname__ = f"{provider.value}:{operation}"
        return await retry_async(attempt, config=self.retry_config_for(provider), sleep=self._sleep)
