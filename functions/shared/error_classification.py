"""
Shared error classification for upstream provider calls.

Centralizes how HTTP responses and library exceptions map onto the collector
error taxonomy, which failures are retryable, and how failures are rendered
into the descriptors stored in collection results.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

import httpx

from shared.errors import (
    AuthRequiredError,
    CollectorError,
    MalformedResponseError,
    NotFoundError,
    TransientProviderError,
)

# HTTP status codes that are safe to retry
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

MAX_ERROR_MESSAGE_LENGTH = 500

# Transient errors - worth retrying
TRANSIENT_PATTERNS = [
    "timeout",
    "timed out",
    "503",
    "502",
    "504",
    "rate limit",
    "too many requests",
    "connection",
    "connection reset",
    "connection refused",
    "unavailable",
    "temporarily",
    "service unavailable",
]

# Permanent errors - don't retry
PERMANENT_PATTERNS = [
    "404",
    "not found",
    "does not exist",
    "malformed",
    "forbidden",
    "unauthorized",
    "credential",
    "package name too long",
    "empty package name",
]

# Patterns to redact from error messages (security)
_SENSITIVE_PATTERNS = [
    (re.compile(r"ghp_[a-zA-Z0-9]{36}", re.IGNORECASE), "ghp_***"),
    (re.compile(r"gho_[a-zA-Z0-9]{36}", re.IGNORECASE), "gho_***"),
    (re.compile(r"github_pat_[a-zA-Z0-9_]{22,}", re.IGNORECASE), "github_pat_***"),
    (re.compile(r"Bearer\s+[a-zA-Z0-9._-]+", re.IGNORECASE), "Bearer ***"),
    (re.compile(r"token\s+[a-zA-Z0-9._-]{20,}", re.IGNORECASE), "token ***"),
    (re.compile(r"arn:aws:[^:]*:[^:]*:\d{12}:[^\s]*", re.IGNORECASE), "arn:aws:***"),
]


@dataclass(frozen=True)
class ErrorDescriptor:
    """Structured, serializable description of a failed step."""

    kind: str
    message: str
    provider: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"kind": self.kind, "message": self.message}
        if self.provider:
            data["provider"] = self.provider
        return data


def classify_error(error_message: str) -> str:
    """
    Classify an error message as transient or permanent for log triage.

    Args:
        error_message: The error message to classify

    Returns:
        "permanent" - Don't retry, error is not recoverable
        "transient" - Retry later, error may be temporary
        "unknown" - Unable to classify, default handling applies
    """
    if not error_message:
        return "unknown"

    error_lower = error_message.lower()

    # Check for permanent errors first (don't retry these)
    for pattern in PERMANENT_PATTERNS:
        if pattern in error_lower:
            return "permanent"

    for pattern in TRANSIENT_PATTERNS:
        if pattern in error_lower:
            return "transient"

    return "unknown"


def sanitize_error(error_str: str) -> str:
    """
    Sanitize error strings to remove credentials before they are stored.

    Redacts API tokens, bearer headers and AWS ARNs, then truncates.
    """
    result = error_str
    for pattern, replacement in _SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)

    if len(result) > MAX_ERROR_MESSAGE_LENGTH:
        result = result[:MAX_ERROR_MESSAGE_LENGTH] + "...[truncated]"

    return result


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Parse a Retry-After header into seconds.

    Accepts both delta-seconds ("120") and HTTP-date forms. Returns None for
    missing or unparseable values; dates in the past yield 0.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (retry_at - now).total_seconds())


def _seconds_until_reset(value: Optional[str]) -> Optional[float]:
    try:
        reset_at = int(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, reset_at - datetime.now(timezone.utc).timestamp())


def error_from_response(response: httpx.Response, provider: Optional[str] = None) -> CollectorError:
    """Map a non-success HTTP response onto the collector error taxonomy."""
    status = response.status_code
    url = str(response.request.url) if response.request is not None else ""
    message = f"HTTP {status} from {url}".strip()

    if status in RETRYABLE_STATUS_CODES or 500 <= status < 600:
        return TransientProviderError(
            message,
            provider=provider,
            status_code=status,
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
    if status == 403 and response.headers.get("X-RateLimit-Remaining") == "0":
        # GitHub signals an exhausted quota with 403 and a reset epoch
        return TransientProviderError(
            message,
            provider=provider,
            status_code=status,
            retry_after=_seconds_until_reset(response.headers.get("X-RateLimit-Reset")),
        )
    if status == 404:
        return NotFoundError(message, provider=provider)
    if status in (401, 403):
        return AuthRequiredError(message, provider=provider)
    return MalformedResponseError(message, provider=provider)


def raise_for_provider_status(response: httpx.Response, provider: Optional[str] = None) -> None:
    """Raise the mapped collector error when ``response`` is not a success."""
    if response.is_success:
        return
    raise error_from_response(response, provider)


def error_from_exception(error: Exception, provider: Optional[str] = None) -> Exception:
    """
    Convert library exceptions raised during a call into collector errors.

    Collector errors and unknown exceptions pass through unchanged.
    """
    if isinstance(error, CollectorError):
        return error
    if isinstance(error, httpx.HTTPStatusError):
        return error_from_response(error.response, provider)
    if isinstance(error, httpx.TransportError):
        return TransientProviderError(f"{type(error).__name__}: {error}", provider=provider)
    return error


def _status_code_of(error: Exception) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable(error: Exception) -> bool:
    """Retryable iff tagged transient, or the error carries HTTP 429 or 5xx."""
    if isinstance(error, TransientProviderError):
        return True
    if isinstance(error, CollectorError):
        return False
    status = _status_code_of(error)
    return status is not None and (status == 429 or 500 <= status < 600)


def retry_hint(error: Exception) -> Optional[float]:
    """Return the provider-supplied retry delay carried by ``error``, if any."""
    return getattr(error, "retry_after", None) if isinstance(error, TransientProviderError) else None


def describe_error(error: Exception) -> ErrorDescriptor:
    """Render ``error`` as a descriptor suitable for storing in results."""
    kind = getattr(error, "kind", None) or "internal_error"
    message = getattr(error, "message", None) or str(error) or type(error).__name__
    return ErrorDescriptor(
        kind=kind,
        message=sanitize_error(message),
        provider=getattr(error, "provider", None),
    )
