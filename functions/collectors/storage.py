"""
S3 persistence for collection results.

``S3ResultStore`` is a persistence sink for :class:`PackageCollector`:
each successful result is written as JSON under
``npm/<package>/<version>/<YYYY-MM-DD>.json``.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from botocore.exceptions import ClientError

from collectors.models import CollectionResult
from shared.aws_clients import get_s3
from shared.response_utils import decimal_default

logger = logging.getLogger(__name__)


def result_key(result: CollectionResult, now: Optional[datetime] = None) -> str:
    day = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    return f"npm/{result.package_name}/{result.version}/{day}.json"


class S3ResultStore:
    """Callable sink writing results to ``bucket``."""

    def __init__(self, bucket: str):
        if not bucket:
            raise ValueError("S3ResultStore requires a bucket name")
        self.bucket = bucket

    def __call__(self, result: CollectionResult) -> str:
        key = result_key(result)
        try:
            get_s3().put_object(
                Bucket=self.bucket,
                Key=key,
                Body=json.dumps(result.to_dict(), indent=2, default=decimal_default),
                ContentType="application/json",
            )
        except ClientError as e:
            logger.error(
                f"Failed to store raw data for {result.package_name}@{result.version}",
                extra={"error_code": e.response["Error"]["Code"], "bucket": self.bucket},
            )
            raise
        logger.debug(f"Stored raw data: s3://{self.bucket}/{key}")
        return key


def default_result_store() -> Optional[S3ResultStore]:
    """Store for ``RAW_DATA_BUCKET`` when configured, else None."""
    bucket = os.environ.get("RAW_DATA_BUCKET")
    return S3ResultStore(bucket) if bucket else None
