"""
Labeled training data collection.

Collects malicious and benign record sets, then enriches the first records
of each set with a full collection through the batch orchestrator. The
number of records enriched per label is capped; the caps are configurable
(``TRAINING_MALICIOUS_ENRICH_LIMIT`` / ``TRAINING_BENIGN_ENRICH_LIMIT``) and
reported in the summary so callers can see how much was enriched.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from collectors.batch_collector import DEFAULT_CONCURRENCY, BatchCollector
from collectors.dedup import label_counts
from collectors.benign_packages import BenignPackageCollector
from collectors.dependencies_collector import EXACT_VERSION
from collectors.malicious_packages import MaliciousPackageCollector
from collectors.models import BatchItem, CollectionOptions, PackageRecord
from shared.cancellation import CancellationToken, run_cancellable
from shared.config import env_int

logger = logging.getLogger(__name__)

DEFAULT_MALICIOUS_COUNT = 1000
DEFAULT_BENIGN_COUNT = 10000
DEFAULT_MALICIOUS_ENRICH_LIMIT = 10
DEFAULT_BENIGN_ENRICH_LIMIT = 50

ENRICHMENT_OPTIONS = CollectionOptions(
    include_dependencies=True,
    include_vulnerabilities=True,
    include_github=True,
    include_static_analysis=False,
)


def enrichment_limits() -> Tuple[int, int]:
    """(malicious, benign) caps from the environment."""
    return (
        env_int("TRAINING_MALICIOUS_ENRICH_LIMIT", DEFAULT_MALICIOUS_ENRICH_LIMIT),
        env_int("TRAINING_BENIGN_ENRICH_LIMIT", DEFAULT_BENIGN_ENRICH_LIMIT),
    )


def _batch_item(record: PackageRecord) -> BatchItem:
    # Records keyed by a range or "all" are collected at their latest version
    version = record.version if EXACT_VERSION.match(record.version) else "latest"
    return BatchItem(record.name, version)


async def _enrich(
    records: List[PackageRecord],
    limit: int,
    batch_collector: BatchCollector,
    concurrency: int,
    token: Optional[CancellationToken],
) -> Tuple[List[dict], int]:
    """Render records, attaching ``fullData`` to the first ``limit`` that collect."""
    rendered = [record.to_dict() for record in records]
    selected = records[: max(0, limit)]
    if not selected:
        return rendered, 0

    items = [_batch_item(record) for record in selected]
    result = await batch_collector.collect_batch(
        items, concurrency=concurrency, options=ENRICHMENT_OPTIONS, token=token
    )

    by_identity: Dict[Tuple[str, str], dict] = {
        (collected.package_name, collected.requested_version): collected.to_dict()
        for collected in result.successes
    }
    for failure in result.failures:
        logger.warning(f"Could not enrich {failure.item}: {failure.error.message}")

    for entry, item in zip(rendered, items):
        full = by_identity.get((item.name, item.version))
        if full is not None:
            entry["fullData"] = full

    return rendered, len(result.failures)


async def collect_labeled_training_data(
    malicious_source: MaliciousPackageCollector,
    benign_source: BenignPackageCollector,
    batch_collector: BatchCollector,
    malicious_count: int = DEFAULT_MALICIOUS_COUNT,
    benign_count: int = DEFAULT_BENIGN_COUNT,
    malicious_enrich_limit: Optional[int] = None,
    benign_enrich_limit: Optional[int] = None,
    concurrency: int = DEFAULT_CONCURRENCY,
    token: Optional[CancellationToken] = None,
) -> dict:
    """
    Collect labeled package sets and enrich a capped subset of each.

    Returns:
        ``{"collectedAt", "malicious", "benign", "summary"}``; the summary
        includes ``enrichment_caps`` with the caps that were applied.
    """
    env_malicious, env_benign = enrichment_limits()
    malicious_cap = env_malicious if malicious_enrich_limit is None else malicious_enrich_limit
    benign_cap = env_benign if benign_enrich_limit is None else benign_enrich_limit

    logger.info(f"Collecting {malicious_count} malicious packages")
    malicious = (await run_cancellable(malicious_source.collect_all(), token))[: max(0, malicious_count)]

    logger.info(f"Collecting {benign_count} benign packages")
    benign = await run_cancellable(benign_source.collect_all(benign_count), token)

    malicious_rendered, malicious_failed = await _enrich(
        malicious, malicious_cap, batch_collector, concurrency, token
    )
    benign_rendered, benign_failed = await _enrich(benign, benign_cap, batch_collector, concurrency, token)

    with_full_data = sum(1 for entry in malicious_rendered + benign_rendered if "fullData" in entry)
    logger.info(
        f"Collected {len(malicious_rendered)} malicious and {len(benign_rendered)} benign packages",
        extra={"with_full_data": with_full_data},
    )

    return {
        "collectedAt": datetime.now(timezone.utc).isoformat(),
        "malicious": malicious_rendered,
        "benign": benign_rendered,
        "summary": {
            "totalMalicious": len(malicious_rendered),
            "totalBenign": len(benign_rendered),
            "totalWithFullData": with_full_data,
            "enrichmentFailures": malicious_failed + benign_failed,
            "enrichment_caps": {"malicious": malicious_cap, "benign": benign_cap},
            "labels": label_counts(malicious + benign),
        },
    }
