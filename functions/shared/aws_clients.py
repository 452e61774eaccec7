"""
Centralized AWS client factory with lazy initialization.

Reduces cold start overhead by deferring boto3 client creation until first
use. Collectors, the result store and the metrics helper share this pattern.
"""

_s3 = None
_cloudwatch = None


def get_s3():
    """Get S3 client, creating it lazily on first use."""
    global _s3
    if _s3 is None:
        import boto3
        _s3 = boto3.client("s3")
    return _s3


def get_cloudwatch():
    """Get CloudWatch client, creating it lazily on first use."""
    global _cloudwatch
    if _cloudwatch is None:
        import boto3
        _cloudwatch = boto3.client("cloudwatch")
    return _cloudwatch


def reset_clients():
    """Reset all cached clients. Used in tests for clean state."""
    global _s3, _cloudwatch
    _s3 = None
    _cloudwatch = None
