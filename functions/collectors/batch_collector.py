"""
Batch orchestrator - collects many packages with bounded concurrency.

Items are processed in groups; within a group a semaphore caps in-flight
collections at ``concurrency`` and ``asyncio.gather(return_exceptions=True)``
settles every item, so one failure never cancels its siblings. Results keep
input order.
"""

import asyncio
import logging
import time
from typing import Iterable, List, Mapping, Optional, Union

from collectors.models import (
    BatchFailure,
    BatchItem,
    BatchResult,
    CollectionOptions,
    CollectionResult,
)
from collectors.package_collector import PackageCollector
from shared.cancellation import CancellationToken, run_cancellable
from shared.error_classification import classify_error, describe_error

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5

BatchInput = Union[BatchItem, Mapping[str, str]]


def _as_item(item: BatchInput) -> BatchItem:
    return item if isinstance(item, BatchItem) else BatchItem.from_dict(item)


class BatchCollector:
    """Runs a :class:`PackageCollector` over many packages."""

    def __init__(self, collector: PackageCollector):
        self.collector = collector

    async def _collect_one(
        self,
        item: BatchItem,
        semaphore: asyncio.Semaphore,
        options: CollectionOptions,
    ) -> CollectionResult:
        async with semaphore:
            return await self.collector.collect(item.name, item.version, options)

    async def _run(
        self,
        items: List[BatchItem],
        concurrency: int,
        options: CollectionOptions,
        group_size: int,
    ) -> BatchResult:
        start_time = time.time()
        semaphore = asyncio.Semaphore(concurrency)
        successes: List[CollectionResult] = []
        failures: List[BatchFailure] = []

        for start in range(0, len(items), group_size):
            group = items[start : start + group_size]
            outcomes = await asyncio.gather(
                *(self._collect_one(item, semaphore, options) for item in group),
                return_exceptions=True,
            )

            for item, outcome in zip(group, outcomes):
                if isinstance(outcome, CollectionResult):
                    successes.append(outcome)
                elif isinstance(outcome, Exception):
                    failure = BatchFailure(item, describe_error(outcome))
                    failures.append(failure)
                    logger.warning(
                        f"Failed to collect {item}: {failure.error.message}",
                        extra={
                            "package": item.name,
                            "error_kind": failure.error.kind,
                            "error_class": classify_error(failure.error.message),
                        },
                    )
                else:
                    raise outcome

            processed = min(start + group_size, len(items))
            logger.info(
                f"Processed {processed}/{len(items)} packages",
                extra={"processed": processed, "total": len(items), "failed": len(failures)},
            )

        logger.info(
            f"Batch complete: {len(successes)} successes, {len(failures)} failures",
            extra={"duration_seconds": round(time.time() - start_time, 3)},
        )
        return BatchResult(successes=tuple(successes), failures=tuple(failures))

    async def collect_batch(
        self,
        items: Iterable[BatchInput],
        concurrency: int = DEFAULT_CONCURRENCY,
        options: Optional[CollectionOptions] = None,
        token: Optional[CancellationToken] = None,
        group_size: Optional[int] = None,
    ) -> BatchResult:
        """
        Collect every item; per-item failures are reported, not raised.

        Args:
            items: ``BatchItem`` instances or ``{"name", "version"}`` dicts
            concurrency: Maximum collections in flight (>= 1)
            options: Aspect selection applied to every item
            token: Cancels the whole batch when fired
            group_size: Items per progress group (defaults to ``concurrency``)

        Raises:
            ValueError: concurrency or group_size below 1
            CollectionCancelledError: ``token`` fired before the batch finished
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        group_size = group_size or concurrency
        if group_size < 1:
            raise ValueError(f"group_size must be at least 1, got {group_size}")

        batch = [_as_item(item) for item in items]
        logger.info(f"Collecting batch of {len(batch)} packages (concurrency {concurrency})")

        return await run_cancellable(
            self._run(batch, concurrency, options or CollectionOptions(), group_size), token
        )
