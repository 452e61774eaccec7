"""
Error types for the collection engine and the API layer.

Collector errors describe why an upstream call failed. Every collector error
carries a machine-readable ``kind`` that survives into the error descriptors
stored in collection results.
"""

import json
from typing import Optional


class CollectorError(Exception):
    """Base class for failures raised while talking to upstream providers."""

    kind = "collector_error"

    def __init__(self, message: str, provider: Optional[str] = None):
        self.message = message
        self.provider = provider
        super().__init__(message)


class TransientProviderError(CollectorError):
    """Upstream returned 429/5xx or the connection failed. Retryable.

    ``retry_after`` is the provider-supplied hint in seconds, parsed once
    from the response and interpreted only by the retry executor.
    """

    kind = "transient"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, provider)
        self.status_code = status_code
        self.retry_after = retry_after


class AuthRequiredError(CollectorError):
    """A gated provider was called without the credential it needs."""

    kind = "auth_required"


class NotFoundError(CollectorError):
    """The requested identity does not exist upstream."""

    kind = "not_found"


class MalformedResponseError(CollectorError):
    """Upstream answered with a payload we cannot interpret."""

    kind = "malformed_response"


class CollectionCancelledError(CollectorError):
    """The caller cancelled the collection or its deadline passed."""

    kind = "cancelled"

    def __init__(self, message: str = "Collection cancelled", provider: Optional[str] = None):
        super().__init__(message, provider)


class FatalMetadataError(CollectorError):
    """Metadata resolution failed, so the package cannot be collected."""

    kind = "fatal_metadata"

    def __init__(self, package: str, cause: Exception):
        self.package = package
        self.cause = cause
        self.cause_kind = getattr(cause, "kind", type(cause).__name__)
        super().__init__(
            f"Metadata resolution failed for {package}: {cause}",
            getattr(cause, "provider", None),
        )


class APIError(Exception):
    """Base class for API errors."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[dict] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> dict:
        """Convert to API Gateway response format."""
        body = {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }
        if self.details:
            body["error"]["details"] = self.details

        return {
            "statusCode": self.status_code,
            "headers": {"Content-Type": "application/json"},
            "body": json.dumps(body),
        }


class InvalidRequestError(APIError):
    """Raised for general invalid request errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="invalid_request",
            message=message,
            status_code=400,
            details=details,
        )


class PackageNotFoundError(APIError):
    """Raised when a package is not found."""

    def __init__(self, package: str, ecosystem: str = "npm"):
        super().__init__(
            code="package_not_found",
            message=f"Package '{package}' not found in {ecosystem}",
            status_code=404,
        )


class UpstreamError(APIError):
    """Raised when a mandatory upstream lookup failed."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="upstream_error",
            message=message,
            status_code=502,
            details=details,
        )


class CollectionTimeoutError(APIError):
    """Raised when a collection was cancelled or ran past its deadline."""

    def __init__(self, message: str = "Collection cancelled before completion"):
        super().__init__(
            code="collection_cancelled",
            message=message,
            status_code=504,
        )
