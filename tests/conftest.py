"""
Shared pytest fixtures for pkgintel tests.
"""

import asyncio
import os
import sys

import boto3
import httpx
import pytest
from moto import mock_aws

# Add functions directory to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "functions"))


def pytest_configure(config):
    """Set AWS credentials before test collection.

    This runs before test collection starts, ensuring boto3 client
    creation during imports doesn't fail with NoRegionError.
    """
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
    os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
    os.environ.setdefault("AWS_REGION", "us-east-1")

    # Disable HTTP client connection pooling in tests to allow proper mocking
    # Each test creates fresh clients, allowing httpx.MockTransport to work
    os.environ["USE_CONNECTION_POOLING"] = "false"


@pytest.fixture(autouse=True)
def aws_credentials():
    """Set fake AWS credentials for all tests."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    os.environ["AWS_REGION"] = "us-east-1"


@pytest.fixture(autouse=True)
def reset_aws_clients():
    """Reset shared AWS client singletons between tests."""
    yield
    from shared.aws_clients import reset_clients
    reset_clients()


@pytest.fixture(autouse=True)
def clean_provider_env(monkeypatch):
    """Tests never see real credentials or overrides from the developer's shell."""
    for name in (
        "GITHUB_TOKEN",
        "OSS_INDEX_USERNAME",
        "OSS_INDEX_TOKEN",
        "RAW_DATA_BUCKET",
        "ENABLE_STATIC_ANALYSIS",
        "TRAINING_MALICIOUS_ENRICH_LIMIT",
        "TRAINING_BENIGN_ENRICH_LIMIT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def mock_s3():
    """Mocked S3 with the raw data bucket created."""
    with mock_aws():
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket="pkgintel-raw-data")
        yield s3


@pytest.fixture
def mock_cloudwatch():
    with mock_aws():
        yield boto3.client("cloudwatch", region_name="us-east-1")


class FakeClock:
    """Manual monotonic clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class RecordingSleep:
    """Async sleep replacement that records requested delays and returns at once."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def gateway(recording_sleep):
    """Gateway with no rate windows and fast, recorded retries."""
    from shared.gateway import ProviderGateway
    from shared.rate_limiter import RateLimiterRegistry
    from shared.retry import RetryConfig

    return ProviderGateway(
        RateLimiterRegistry(),
        default_retry=RetryConfig(max_retries=2, base_delay=1.0, max_delay=10.0),
        sleep=recording_sleep,
    )


def create_mock_transport(handler):
    """Create a mock transport for httpx that routes requests to handler."""
    async def mock_handler(request: httpx.Request) -> httpx.Response:
        return handler(request)
    return httpx.MockTransport(mock_handler)


@pytest.fixture
def mock_client_factory():
    """Build an httpx.AsyncClient whose requests are answered by ``handler``."""
    def factory(handler):
        return httpx.AsyncClient(transport=create_mock_transport(handler))
    return factory


@pytest.fixture
def api_gateway_event():
    """Base API Gateway event structure."""
    return {
        "httpMethod": "POST",
        "headers": {"origin": "http://localhost:3000"},
        "pathParameters": {},
        "queryStringParameters": {},
        "body": None,
        "requestContext": {"requestId": "test-request-id", "identity": {"sourceIp": "127.0.0.1"}},
    }


def registry_document(name="left-pad", versions=None, latest=None, **extra):
    """Minimal npm registry document for ``name``."""
    versions = versions or {
        "1.3.0": {
            "name": name,
            "version": "1.3.0",
            "license": "WTFPL",
            "repository": {"type": "git", "url": "git+https://github.com/stevemao/left-pad.git"},
            "dist": {"tarball": f"https://registry.npmjs.org/{name}/-/{name}-1.3.0.tgz"},
        }
    }
    document = {
        "name": name,
        "dist-tags": {"latest": latest or list(versions)[-1]},
        "versions": versions,
        "time": {"created": "2014-03-14T00:00:00.000Z"},
        "maintainers": [{"name": "stevemao"}],
    }
    document.update(extra)
    return document
