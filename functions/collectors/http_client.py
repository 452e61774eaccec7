"""
Shared HTTP Client with Connection Pooling.

Provides a reusable httpx.AsyncClient that is shared across source fetchers
to enable connection reuse and reduce connection overhead.

Usage:
    from collectors.http_client import get_http_client

    async def my_fetcher():
        client = get_http_client()
        response = await client.get("https://api.example.com/data")

Testing:
    Set USE_CONNECTION_POOLING=false in test fixtures to disable connection
    pooling. This creates a new client per call for test isolation. Fetchers
    also accept an explicit ``client`` so tests can pass one built on
    ``httpx.MockTransport``.
"""

import asyncio
import logging
import os
from typing import Optional

import httpx

from shared.constants import USER_AGENT
from shared.error_classification import raise_for_provider_status
from shared.errors import MalformedResponseError, TransientProviderError

logger = logging.getLogger(__name__)

_client: Optional[httpx.AsyncClient] = None
_client_loop_id: Optional[int] = None  # Track which event loop the client was created on

DEFAULT_TIMEOUT = httpx.Timeout(
    30.0,  # Total timeout
    connect=10.0,  # Connection timeout
)

DEFAULT_LIMITS = httpx.Limits(
    max_connections=100,
    max_keepalive_connections=20,
    keepalive_expiry=30.0,
)

DEFAULT_HEADERS = {"User-Agent": USER_AGENT}


def _use_connection_pooling() -> bool:
    """Check if connection pooling is enabled (runtime check)."""
    return os.environ.get("USE_CONNECTION_POOLING", "true").lower() == "true"


def new_http_client(headers: Optional[dict] = None) -> httpx.AsyncClient:
    """Create a client with the default timeout, limits and User-Agent."""
    merged = dict(DEFAULT_HEADERS)
    merged.update(headers or {})
    return httpx.AsyncClient(
        timeout=DEFAULT_TIMEOUT,
        limits=DEFAULT_LIMITS,
        follow_redirects=True,
        headers=merged,
    )


def get_http_client() -> httpx.AsyncClient:
    """
    Get an HTTP client for making requests.

    With pooling enabled the shared client is recreated if the event loop
    changes (Lambda creates new loops between invocations while reusing the
    execution context). With pooling disabled a new client is returned.
    """
    global _client, _client_loop_id

    if not _use_connection_pooling():
        return new_http_client()

    try:
        current_loop_id = id(asyncio.get_running_loop())
    except RuntimeError:
        current_loop_id = None

    if _client is not None and _client_loop_id != current_loop_id:
        logger.debug("Event loop changed, recreating HTTP client")
        _client = None

    if _client is None:
        logger.debug("Initializing shared HTTP client with connection pooling")
        _client = new_http_client()
        _client_loop_id = current_loop_id

    return _client


def get_http_client_with_headers(headers: dict) -> httpx.AsyncClient:
    """Get a new HTTP client with custom default headers (e.g. auth tokens)."""
    return new_http_client(headers)


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    provider: Optional[str] = None,
    **kwargs,
):
    """
    Issue a request and decode the JSON body.

    Raises collector errors: non-success statuses are mapped by
    ``raise_for_provider_status``, transport failures become
    ``TransientProviderError`` and undecodable bodies become
    ``MalformedResponseError``.
    """
    try:
        resp = await client.request(method, url, **kwargs)
    except httpx.TransportError as e:
        raise TransientProviderError(f"{type(e).__name__} calling {url}: {e}", provider=provider) from e

    raise_for_provider_status(resp, provider)

    try:
        return resp.json()
    except ValueError as e:
        raise MalformedResponseError(f"Invalid JSON from {url}", provider=provider) from e


async def request_text(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    provider: Optional[str] = None,
    **kwargs,
) -> str:
    """Like ``request_json`` but returns the decoded body text."""
    try:
        resp = await client.request(method, url, **kwargs)
    except httpx.TransportError as e:
        raise TransientProviderError(f"{type(e).__name__} calling {url}: {e}", provider=provider) from e

    raise_for_provider_status(resp, provider)
    return resp.text
