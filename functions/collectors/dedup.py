"""
Deduplication and merge of package records from multiple sources.

Records are keyed by ``(name, version)``. When several sources report the
same key their source names are unioned, and a key corroborated by two or
more distinct sources is raised to at least ``high`` confidence. Confidence
never goes down.

The merge is order-insensitive: any grouping or ordering of the same
multiset of records yields the same output. Records are folded in a
canonical order, so conflicting detail fields resolve the same way no
matter how the input was arranged. Output is sorted by key.
"""

import json
import logging
from typing import Dict, Iterable, List, Sequence, Tuple

from collectors.models import Confidence, Label, PackageRecord

logger = logging.getLogger(__name__)

CORROBORATION_THRESHOLD = 2


def _canonical_order(record: PackageRecord) -> tuple:
    return (
        record.name,
        record.version,
        tuple(sorted(record.sources)),
        record.confidence.rank,
        record.label.precedence,
        json.dumps(dict(record.details), sort_keys=True, default=str),
    )


def _combine(existing: PackageRecord, incoming: PackageRecord) -> PackageRecord:
    sources = existing.sources | incoming.sources
    confidence = Confidence.highest(existing.confidence, incoming.confidence)
    if len(sources) >= CORROBORATION_THRESHOLD:
        confidence = Confidence.highest(confidence, Confidence.HIGH)

    label = max(existing.label, incoming.label, key=lambda lbl: lbl.precedence)

    details = dict(incoming.details)
    details.update(existing.details)

    return PackageRecord(
        name=existing.name,
        version=existing.version,
        label=label,
        sources=sources,
        confidence=confidence,
        details=details,
    )


def _normalize(record: PackageRecord) -> PackageRecord:
    """Apply the corroboration rule to a record that arrives pre-merged."""
    if len(record.sources) >= CORROBORATION_THRESHOLD and record.confidence.rank < Confidence.HIGH.rank:
        return PackageRecord(
            name=record.name,
            version=record.version,
            label=record.label,
            sources=record.sources,
            confidence=Confidence.HIGH,
            details=record.details,
        )
    return record


def merge_records(record_lists: Iterable[Sequence[PackageRecord]]) -> List[PackageRecord]:
    """
    Merge record lists from several sources into unique records.

    Args:
        record_lists: One sequence of records per source (any grouping).

    Returns:
        Unique records sorted by ``(name, version)``.
    """
    flattened = [record for records in record_lists for record in records]
    flattened.sort(key=_canonical_order)

    merged: Dict[Tuple[str, str], PackageRecord] = {}
    for record in flattened:
        existing = merged.get(record.key)
        if existing is None:
            merged[record.key] = _normalize(record)
        else:
            merged[record.key] = _combine(existing, record)

    logger.debug(
        f"Merged {len(flattened)} records into {len(merged)} unique packages",
        extra={"input_records": len(flattened), "unique_records": len(merged)},
    )

    return [merged[key] for key in sorted(merged)]


def label_counts(records: Iterable[PackageRecord]) -> Dict[str, int]:
    """Count records per label, for summaries."""
    counts = {label.value: 0 for label in Label}
    for record in records:
        counts[record.label.value] += 1
    return counts
