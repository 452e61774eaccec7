"""
Collect Package API - Collects all data for one npm package version.

POST /collect/package
{
    "packageName": "left-pad",
    "version": "1.3.0",              # optional, default "latest"
    "includeDependencies": true,
    "includeVulnerabilities": true,
    "includeGitHub": true,
    "includeStaticAnalysis": false,
    "vulnerabilitySources": "all",   # all | osv | github | ossindex | npm
    "dependencyDepth": 0             # 0-5
}

Errors: 400 invalid request, 404 unknown package/version, 502 registry
failure, 504 deadline reached before the collection finished.
"""

import logging

from collectors.http_client import new_http_client
from collectors.models import CollectionOptions
from collectors.sources import build_package_collector
from collectors.storage import default_result_store
from shared.constants import VULNERABILITY_SOURCES
from shared.errors import (
    APIError,
    CollectionCancelledError,
    CollectionTimeoutError,
    FatalMetadataError,
    InvalidRequestError,
    NotFoundError,
    PackageNotFoundError,
    UpstreamError,
)
from shared.logging_utils import configure_structured_logging, set_request_id
from shared.package_validation import validate_npm_package_name, validate_version
from shared.request_utils import deadline_token, get_origin, int_field, parse_json_body, run_async
from shared.response_utils import error_response, success_response

logger = logging.getLogger(__name__)

MAX_DEPENDENCY_DEPTH = 5


def parse_collection_options(body: dict) -> CollectionOptions:
    sources = str(body.get("vulnerabilitySources", "all")).lower()
    if sources != "all" and sources not in VULNERABILITY_SOURCES:
        raise InvalidRequestError(
            "vulnerabilitySources must be 'all' or one of: " + ", ".join(VULNERABILITY_SOURCES)
        )
    int_field(body, "dependencyDepth", 0, (0, MAX_DEPENDENCY_DEPTH))
    return CollectionOptions.from_dict(dict(body, vulnerabilitySources=sources))


def parse_package_request(body: dict):
    """Validate the package identity fields; returns (name, version)."""
    raw_name = body.get("packageName") or body.get("name")
    if not isinstance(raw_name, str):
        raise InvalidRequestError("packageName is required")
    is_valid, error, name = validate_npm_package_name(raw_name)
    if not is_valid:
        raise InvalidRequestError(error)

    is_valid, error, version = validate_version(body.get("version"))
    if not is_valid:
        raise InvalidRequestError(error)
    return name, version


def fatal_metadata_error(e: FatalMetadataError) -> APIError:
    if isinstance(e.cause, NotFoundError):
        return PackageNotFoundError(e.package)
    return UpstreamError(
        f"Could not resolve metadata for {e.package}",
        details={"kind": e.cause_kind, "provider": e.provider},
    )


async def _collect(name, version, options, token):
    async with new_http_client() as client:
        collector = build_package_collector(persistence_sink=default_result_store(), client=client)
        return await collector.collect(name, version, options, token=token)


def handler(event, context):
    """Handle a single-package collection request."""
    configure_structured_logging()
    set_request_id(event)
    origin = get_origin(event)

    try:
        body = parse_json_body(event)
        name, version = parse_package_request(body)
        options = parse_collection_options(body)
        result = run_async(_collect(name, version, options, deadline_token(context)))
    except FatalMetadataError as e:
        logger.warning(f"Metadata resolution failed: {e}", extra={"error_kind": e.cause_kind})
        api_error = fatal_metadata_error(e)
        return error_response(
            api_error.status_code, api_error.code, api_error.message, details=api_error.details, origin=origin
        )
    except CollectionCancelledError as e:
        logger.warning(f"Collection cancelled: {e}")
        api_error = CollectionTimeoutError(e.message)
        return error_response(api_error.status_code, api_error.code, api_error.message, origin=origin)
    except APIError as e:
        return error_response(e.status_code, e.code, e.message, details=e.details, origin=origin)

    logger.info(
        f"Collected {result.package_name}@{result.version}",
        extra={"failed_aspects": sorted(result.errors)},
    )
    return success_response(result.to_dict(), origin=origin)
