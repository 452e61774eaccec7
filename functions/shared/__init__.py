# Shared utilities package
from .errors import APIError, CollectorError
from .response_utils import error_response, success_response

__all__ = [
    "APIError",
    "CollectorError",
    "error_response",
    "success_response",
]
