"""
Batch Collect API - Collects many npm packages in one request.

POST /collect/batch
{
    "packages": [{"name": "left-pad", "version": "1.3.0"}, {"name": "lodash"}],
    "concurrency": 5,                # 1-20
    "includeGitHub": true,
    ...                              # same options as /collect/package
}

Always 200 when the request is valid: per-package failures are reported in
``errors`` next to the successful ``results``.
"""

import logging
import time

from api.collect_package import parse_collection_options
from collectors.batch_collector import DEFAULT_CONCURRENCY, BatchCollector
from collectors.http_client import new_http_client
from collectors.models import BatchItem
from collectors.sources import build_package_collector
from collectors.storage import default_result_store
from shared.errors import APIError, CollectionCancelledError, CollectionTimeoutError, InvalidRequestError
from shared.logging_utils import configure_structured_logging, set_request_id
from shared.metrics import emit_batch_metrics
from shared.package_validation import validate_npm_package_name, validate_version
from shared.request_utils import deadline_token, get_origin, int_field, parse_json_body, run_async
from shared.response_utils import error_response, success_response

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100
MAX_CONCURRENCY = 20


def parse_batch_items(body: dict) -> list:
    packages = body.get("packages")
    if not isinstance(packages, list) or not packages:
        raise InvalidRequestError("packages must be a non-empty list")
    if len(packages) > MAX_BATCH_SIZE:
        raise InvalidRequestError(f"At most {MAX_BATCH_SIZE} packages per batch")

    items = []
    for index, entry in enumerate(packages):
        if isinstance(entry, str):
            entry = {"name": entry}
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            raise InvalidRequestError(f"packages[{index}] must have a name")

        is_valid, error, name = validate_npm_package_name(entry["name"])
        if not is_valid:
            raise InvalidRequestError(f"packages[{index}]: {error}")
        is_valid, error, version = validate_version(entry.get("version"))
        if not is_valid:
            raise InvalidRequestError(f"packages[{index}]: {error}")
        items.append(BatchItem(name, version))
    return items


async def _collect_batch(items, concurrency, options, token):
    async with new_http_client() as client:
        collector = build_package_collector(persistence_sink=default_result_store(), client=client)
        return await BatchCollector(collector).collect_batch(items, concurrency, options, token=token)


def handler(event, context):
    """Handle a batch collection request."""
    configure_structured_logging()
    set_request_id(event)
    origin = get_origin(event)
    start_time = time.time()

    try:
        body = parse_json_body(event)
        items = parse_batch_items(body)
        concurrency = int_field(body, "concurrency", DEFAULT_CONCURRENCY, (1, MAX_CONCURRENCY))
        options = parse_collection_options(body)
        result = run_async(_collect_batch(items, concurrency, options, deadline_token(context)))
    except CollectionCancelledError as e:
        logger.warning(f"Batch cancelled: {e}")
        api_error = CollectionTimeoutError(e.message)
        return error_response(api_error.status_code, api_error.code, api_error.message, origin=origin)
    except APIError as e:
        return error_response(e.status_code, e.code, e.message, details=e.details, origin=origin)

    summary = result.summary
    emit_batch_metrics([
        {"metric_name": "BatchProcessingTime", "value": time.time() - start_time, "unit": "Seconds"},
        {"metric_name": "BatchSize", "value": summary["total"]},
        {"metric_name": "BatchSuccesses", "value": summary["successful"]},
        {"metric_name": "BatchFailures", "value": summary["failed"]},
    ])

    logger.info(f"Completed: {summary['successful']} successes, {summary['failed']} failures")
    return success_response(result.to_dict(), origin=origin)
