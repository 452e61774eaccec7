"""
Tests for npm registry collector.
"""

import json

import httpx
import pytest

from collectors.npm_collector import (
    clean_repository_url,
    encode_scoped_package,
    get_download_stats,
    get_npm_metadata,
    get_version_manifest,
    resolve_version,
)
from conftest import registry_document
from shared.errors import MalformedResponseError, NotFoundError, TransientProviderError


class TestEncodeScopedPackage:
    def test_regular_package_unchanged(self):
        assert encode_scoped_package("lodash") == "lodash"

    def test_scoped_package_encoded(self):
        """Scoped package slash should be encoded, @ kept."""
        assert encode_scoped_package("@babel/core") == "@babel%2Fcore"


class TestCleanRepositoryUrl:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ({"type": "git", "url": "git+https://github.com/stevemao/left-pad.git"}, "https://github.com/stevemao/left-pad"),
            ("git://github.com/lodash/lodash.git", "https://github.com/lodash/lodash"),
            ("git@github.com:expressjs/express.git", "https://github.com/expressjs/express"),
            ("ssh://git@github.com/chalk/chalk.git", "https://github.com/chalk/chalk"),
            ("github:sindresorhus/got", "https://github.com/sindresorhus/got"),
            ("npm/cli", "https://github.com/npm/cli"),
            ("https://gitlab.com/foo/bar", "https://gitlab.com/foo/bar"),
        ],
    )
    def test_forms(self, raw, expected):
        assert clean_repository_url(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", {}, {"type": "git"}, 42])
    def test_missing(self, raw):
        assert clean_repository_url(raw) is None


class TestResolveVersion:
    def _document(self):
        return registry_document(
            versions={"1.0.0": {}, "1.3.0": {}, "2.0.0-beta.1": {}},
            latest="1.3.0",
            **{"dist-tags": {"latest": "1.3.0", "next": "2.0.0-beta.1"}},
        )

    def test_latest(self):
        assert resolve_version(self._document(), "left-pad", "latest") == "1.3.0"
        assert resolve_version(self._document(), "left-pad", None) == "1.3.0"

    def test_other_dist_tag(self):
        assert resolve_version(self._document(), "left-pad", "next") == "2.0.0-beta.1"

    def test_exact_version(self):
        assert resolve_version(self._document(), "left-pad", "1.0.0") == "1.0.0"

    def test_unknown_version(self):
        with pytest.raises(NotFoundError, match="9.9.9"):
            resolve_version(self._document(), "left-pad", "9.9.9")

    def test_latest_without_dist_tags_uses_last_version(self):
        document = {"versions": {"0.1.0": {}, "0.2.0": {}}}
        assert resolve_version(document, "odd", "latest") == "0.2.0"

    def test_no_versions(self):
        with pytest.raises(MalformedResponseError):
            resolve_version({"versions": {}}, "unpublished", "latest")


class TestGetNpmMetadata:
    @pytest.mark.asyncio
    async def test_left_pad_latest(self, mock_client_factory):
        requested = []

        def handler(request):
            requested.append(str(request.url))
            return httpx.Response(200, json=registry_document())

        async with mock_client_factory(handler) as client:
            metadata = await get_npm_metadata("left-pad", "latest", client=client)

        assert requested == ["https://registry.npmjs.org/left-pad"]
        assert metadata["resolved_version"] == "1.3.0"
        assert metadata["requested_version"] == "latest"
        assert metadata["license"] == "WTFPL"
        assert metadata["repository_url"] == "https://github.com/stevemao/left-pad"
        assert metadata["license_compatibility"]["requires_same_license"] is False
        assert metadata["tarball_url"].endswith("left-pad-1.3.0.tgz")
        assert metadata["maintainers"] == ["stevemao"]
        assert metadata["is_deprecated"] is False
        assert metadata["source"] == "npm"

    @pytest.mark.asyncio
    async def test_scoped_package_url(self, mock_client_factory):
        requested = []

        def handler(request):
            requested.append(request.url.raw_path.decode())
            return httpx.Response(200, json=registry_document("@babel/core"))

        async with mock_client_factory(handler) as client:
            await get_npm_metadata("@babel/core", client=client)

        assert requested == ["/@babel%2Fcore"]

    @pytest.mark.asyncio
    async def test_install_scripts_and_deprecation(self, mock_client_factory):
        document = registry_document(
            "event-stream",
            versions={
                "3.3.6": {
                    "scripts": {"postinstall": "node ./install.js", "test": "tape"},
                    "deprecated": "compromised release",
                    "license": {"type": "MIT"},
                }
            },
        )

        async with mock_client_factory(lambda r: httpx.Response(200, json=document)) as client:
            metadata = await get_npm_metadata("event-stream", "3.3.6", client=client)

        assert metadata["install_scripts"] == {"postinstall": "node ./install.js"}
        assert metadata["is_deprecated"] is True
        assert metadata["deprecation_message"] == "compromised release"
        assert metadata["license"] == "MIT"

    @pytest.mark.asyncio
    async def test_missing_version(self, mock_client_factory):
        async with mock_client_factory(lambda r: httpx.Response(200, json=registry_document())) as client:
            with pytest.raises(NotFoundError):
                await get_npm_metadata("left-pad", "9.9.9", client=client)

    @pytest.mark.asyncio
    async def test_missing_package(self, mock_client_factory):
        async with mock_client_factory(lambda r: httpx.Response(404, json={"error": "Not found"})) as client:
            with pytest.raises(NotFoundError) as exc_info:
                await get_npm_metadata("does-not-exist-xyz", client=client)

        assert exc_info.value.provider == "npm_registry"

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, mock_client_factory):
        async with mock_client_factory(lambda r: httpx.Response(503)) as client:
            with pytest.raises(TransientProviderError):
                await get_npm_metadata("left-pad", client=client)

    @pytest.mark.asyncio
    async def test_unexpected_document(self, mock_client_factory):
        async with mock_client_factory(lambda r: httpx.Response(200, content=json.dumps([1, 2]))) as client:
            with pytest.raises(MalformedResponseError):
                await get_npm_metadata("left-pad", client=client)


@pytest.mark.asyncio
async def test_get_version_manifest(mock_client_factory):
    requested = []

    def handler(request):
        requested.append(str(request.url))
        return httpx.Response(200, json={"name": "lodash", "version": "4.17.21"})

    async with mock_client_factory(handler) as client:
        manifest = await get_version_manifest("lodash", "latest", client=client)

    assert requested == ["https://registry.npmjs.org/lodash/latest"]
    assert manifest["version"] == "4.17.21"


@pytest.mark.asyncio
async def test_get_download_stats(mock_client_factory):
    payload = {"downloads": 1234, "start": "2024-01-01", "end": "2024-01-31", "package": "lodash"}

    async with mock_client_factory(lambda r: httpx.Response(200, json=payload)) as client:
        stats = await get_download_stats("lodash", "last-month", client=client)

    assert stats == {"package": "lodash", "downloads": 1234, "start": "2024-01-01", "end": "2024-01-31"}
