"""Tests for the shared HTTP helpers."""

import httpx
import pytest

from collectors.http_client import (
    DEFAULT_HEADERS,
    get_http_client,
    new_http_client,
    request_json,
    request_text,
)
from shared.errors import MalformedResponseError, NotFoundError, TransientProviderError


class TestRequestJson:
    @pytest.mark.asyncio
    async def test_decodes_json(self, mock_client_factory):
        client = mock_client_factory(lambda request: httpx.Response(200, json={"ok": True}))
        async with client:
            assert await request_json(client, "GET", "https://registry.npmjs.org/x") == {"ok": True}

    @pytest.mark.asyncio
    async def test_maps_status(self, mock_client_factory):
        client = mock_client_factory(lambda request: httpx.Response(404))
        async with client:
            with pytest.raises(NotFoundError) as exc_info:
                await request_json(client, "GET", "https://registry.npmjs.org/x", provider="npm_registry")

        assert exc_info.value.provider == "npm_registry"

    @pytest.mark.asyncio
    async def test_invalid_json_is_malformed(self, mock_client_factory):
        client = mock_client_factory(lambda request: httpx.Response(200, text="<html>"))
        async with client:
            with pytest.raises(MalformedResponseError):
                await request_json(client, "GET", "https://registry.npmjs.org/x")

    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self, mock_client_factory):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        client = mock_client_factory(handler)
        async with client:
            with pytest.raises(TransientProviderError):
                await request_json(client, "GET", "https://registry.npmjs.org/x")


@pytest.mark.asyncio
async def test_request_text(mock_client_factory):
    client = mock_client_factory(lambda request: httpx.Response(200, text="# README"))
    async with client:
        assert await request_text(client, "GET", "https://example.com/README.md") == "# README"


@pytest.mark.asyncio
async def test_new_client_merges_headers():
    async with new_http_client({"Authorization": "Bearer x"}) as client:
        assert client.headers["User-Agent"] == DEFAULT_HEADERS["User-Agent"]
        assert client.headers["Authorization"] == "Bearer x"


@pytest.mark.asyncio
async def test_pooling_disabled_returns_fresh_clients():
    # conftest sets USE_CONNECTION_POOLING=false
    first = get_http_client()
    second = get_http_client()
    try:
        assert first is not second
    finally:
        await first.aclose()
        await second.aclose()
