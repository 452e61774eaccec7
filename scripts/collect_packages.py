#!/usr/bin/env python3
"""
Collect Packages Script

Runs the batch collector locally for a list of packages and writes the
BatchResult as JSON. Packages come from the command line ("name" or
"name@version") or a JSON file of names / {"name", "version"} objects.

Example:
    python scripts/collect_packages.py left-pad@1.3.0 lodash --concurrency 2
    python scripts/collect_packages.py --packages-file packages.json --output results.json
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add parent directory for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "functions"))

from collectors.batch_collector import DEFAULT_CONCURRENCY, BatchCollector
from collectors.http_client import new_http_client
from collectors.models import BatchItem, CollectionOptions
from collectors.sources import build_package_collector
from collectors.storage import S3ResultStore
from shared.cancellation import CancellationToken
from shared.logging_utils import configure_structured_logging
from shared.response_utils import decimal_default


def parse_package_arg(value: str) -> BatchItem:
    """Split "name@version"; a leading "@" belongs to the scope."""
    at = value.rfind("@")
    if at > 0:
        return BatchItem(value[:at], value[at + 1 :] or "latest")
    return BatchItem(value)


def load_items(packages_file: str) -> list:
    with open(packages_file) as f:
        entries = json.load(f)
    return [BatchItem(entry) if isinstance(entry, str) else BatchItem.from_dict(entry) for entry in entries]


async def collect(items, concurrency, options, bucket=None, timeout=None):
    sink = S3ResultStore(bucket) if bucket else None
    token = CancellationToken(timeout=timeout) if timeout else None
    async with new_http_client() as client:
        collector = build_package_collector(persistence_sink=sink, client=client)
        return await BatchCollector(collector).collect_batch(items, concurrency, options, token=token)


async def main():
    parser = argparse.ArgumentParser(description="Collect npm package data")
    parser.add_argument("packages", nargs="*", help="Packages as name or name@version")
    parser.add_argument("--packages-file", type=str, help="Package list JSON file")
    parser.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY, help="Collections in flight")
    parser.add_argument("--dependency-depth", type=int, default=0, help="Transitive dependency depth")
    parser.add_argument(
        "--vulnerability-sources",
        type=str,
        default="all",
        help="all, osv, github, ossindex or npm",
    )
    parser.add_argument("--no-github", action="store_true", help="Skip GitHub repository metrics")
    parser.add_argument("--bucket", type=str, default=None, help="Also store results in this S3 bucket")
    parser.add_argument("--timeout", type=float, default=None, help="Cancel the batch after N seconds")
    parser.add_argument("--output", type=str, default=None, help="Write results to this file")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    configure_structured_logging(logging.DEBUG if args.verbose else logging.INFO)

    items = [parse_package_arg(p) for p in args.packages]
    if args.packages_file:
        items.extend(load_items(args.packages_file))
    if not items:
        parser.error("no packages given")

    options = CollectionOptions(
        include_github=not args.no_github,
        vulnerability_sources=args.vulnerability_sources,
        dependency_depth=args.dependency_depth,
    )
    result = await collect(items, args.concurrency, options, args.bucket, args.timeout)

    output = json.dumps(result.to_dict(), indent=2, default=decimal_default)
    if args.output:
        Path(args.output).write_text(output)
        print(f"Wrote {result.summary['total']} results to {args.output}")
    else:
        print(output)

    summary = result.summary
    print(f"\nCompleted: {summary['successful']} success, {summary['failed']} errors", file=sys.stderr)


if __name__ == "__main__":
    asyncio.run(main())
