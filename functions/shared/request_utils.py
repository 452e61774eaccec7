"""Shared request utilities for API handlers."""

import asyncio
import json
from typing import Any, Awaitable, Optional, Tuple, TypeVar

from shared.cancellation import CancellationToken
from shared.errors import InvalidRequestError

T = TypeVar("T")

# Seconds kept back from the Lambda deadline to build and return a response
DEADLINE_MARGIN_SECONDS = 2.0


def get_origin(event: dict) -> Optional[str]:
    headers = event.get("headers") or {}
    return headers.get("origin") or headers.get("Origin")


def parse_json_body(event: dict) -> dict:
    """Parse the request body (use `or "{}"` to handle explicit None)."""
    try:
        body = json.loads(event.get("body") or "{}")
    except json.JSONDecodeError:
        raise InvalidRequestError("Invalid JSON body")
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return body


def int_field(body: dict, field: str, default: int, bounds: Tuple[int, int]) -> int:
    """Read an integer field and check it lies within ``bounds`` (inclusive)."""
    value = body.get(field, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRequestError(f"{field} must be an integer")
    low, high = bounds
    if not low <= value <= high:
        raise InvalidRequestError(f"{field} must be between {low} and {high}")
    return value


def deadline_token(context: Any) -> Optional[CancellationToken]:
    """Token that fires shortly before the Lambda invocation times out."""
    get_remaining = getattr(context, "get_remaining_time_in_millis", None)
    if get_remaining is None:
        return None
    return CancellationToken(timeout=max(0.0, get_remaining() / 1000 - DEADLINE_MARGIN_SECONDS))


def run_async(coro: Awaitable[T]) -> T:
    """Run a coroutine on a fresh event loop (one per invocation)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()
