"""
Training Data API - Collects labeled malicious and benign package sets.

POST /collect/training-data
{
    "maliciousCount": 1000,
    "benignCount": 10000,
    "maliciousEnrichLimit": 10,      # optional, env TRAINING_MALICIOUS_ENRICH_LIMIT
    "benignEnrichLimit": 50          # optional, env TRAINING_BENIGN_ENRICH_LIMIT
}
"""

import logging

from collectors.batch_collector import BatchCollector
from collectors.benign_packages import BenignPackageCollector
from collectors.http_client import new_http_client
from collectors.malicious_packages import MaliciousPackageCollector
from collectors.sources import build_gateway, build_package_collector
from collectors.training_data import (
    DEFAULT_BENIGN_COUNT,
    DEFAULT_MALICIOUS_COUNT,
    collect_labeled_training_data,
)
from shared.errors import APIError, CollectionCancelledError, CollectionTimeoutError
from shared.logging_utils import configure_structured_logging, set_request_id
from shared.request_utils import deadline_token, get_origin, int_field, parse_json_body, run_async
from shared.response_utils import error_response, success_response

logger = logging.getLogger(__name__)

MAX_LABELED_COUNT = 100000
MAX_ENRICH_LIMIT = 500


def _optional_limit(body: dict, field: str):
    if body.get(field) is None:
        return None
    return int_field(body, field, 0, (0, MAX_ENRICH_LIMIT))


def parse_training_request(body: dict) -> dict:
    return {
        "malicious_count": int_field(body, "maliciousCount", DEFAULT_MALICIOUS_COUNT, (0, MAX_LABELED_COUNT)),
        "benign_count": int_field(body, "benignCount", DEFAULT_BENIGN_COUNT, (0, MAX_LABELED_COUNT)),
        "malicious_enrich_limit": _optional_limit(body, "maliciousEnrichLimit"),
        "benign_enrich_limit": _optional_limit(body, "benignEnrichLimit"),
    }


async def _collect(params: dict, token):
    gateway = build_gateway()
    async with new_http_client() as client:
        return await collect_labeled_training_data(
            MaliciousPackageCollector(gateway, client),
            BenignPackageCollector(gateway, client),
            BatchCollector(build_package_collector(gateway, client=client)),
            token=token,
            **params,
        )


def handler(event, context):
    """Handle a labeled training data request."""
    configure_structured_logging()
    set_request_id(event)
    origin = get_origin(event)

    try:
        body = parse_json_body(event)
        params = parse_training_request(body)
        result = run_async(_collect(params, deadline_token(context)))
    except CollectionCancelledError as e:
        logger.warning(f"Training data collection cancelled: {e}")
        api_error = CollectionTimeoutError(e.message)
        return error_response(api_error.status_code, api_error.code, api_error.message, origin=origin)
    except APIError as e:
        return error_response(e.status_code, e.code, e.message, details=e.details, origin=origin)

    return success_response(result, origin=origin)
